"""In-process queue backend for development and tests."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from jobqueue.adapters.base import (
    QueueAdapter,
    QueueEmptyError,
    QueueError,
    decode_item,
    encode_item,
)

DEFAULT_PREFIX = "queue:"


class MemoryQueue(QueueAdapter):
    """Thread-safe queues kept in a dictionary of deques of JSON bytes."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.prefix = prefix or DEFAULT_PREFIX
        self._queues: dict[str, deque[bytes]] = {}
        self._lock = threading.Lock()

    def _key(self, queue_name: str) -> str:
        return self.prefix + queue_name

    def enqueue(self, queue_name: str, item: Any) -> None:
        data = encode_item(item)
        with self._lock:
            self._queues.setdefault(self._key(queue_name), deque()).append(data)

    def dequeue(self, queue_name: str) -> Any:
        with self._lock:
            queue = self._queues.get(self._key(queue_name))
            if not queue:
                raise QueueEmptyError(queue_name)
            data = queue.popleft()
        return decode_item(data)

    def enqueue_batch(self, queue_name: str, items: Iterable[Any]) -> None:
        items = list(items)
        if not items:
            return
        with self._lock:
            queue = self._queues.setdefault(self._key(queue_name), deque())
            for index, item in enumerate(items):
                try:
                    data = encode_item(item)
                except QueueError as exc:
                    raise QueueError(
                        f"error marshaling queue item at index {index}: {exc.__cause__}"
                    ) from exc.__cause__
                queue.append(data)

    def size(self, queue_name: str) -> int:
        with self._lock:
            queue = self._queues.get(self._key(queue_name))
            return len(queue) if queue is not None else 0

    def clear(self, queue_name: str) -> None:
        with self._lock:
            self._queues.pop(self._key(queue_name), None)