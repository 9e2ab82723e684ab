"""Common interface and JSON encoding for queue storage backends."""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any


class QueueError(Exception):
    """Raised when a queue backend cannot complete an operation."""


class QueueEmptyError(QueueError):
    """Raised when an item is requested from a queue that holds none."""

    def __init__(self, queue_name: str, message: str = "queue is empty") -> None:
        super().__init__(f"{message}: {queue_name}")
        self.queue_name = queue_name


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.astimezone()
        text = value.isoformat()
        return text[:-6] + "Z" if text.endswith("+00:00") else text
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def encode_item(item: Any) -> bytes:
    """Serialize an item to compact JSON bytes.

    Objects with a ``to_dict`` method are encoded through it, datetimes as
    RFC 3339 strings and bytes as base64.
    """
    try:
        text = json.dumps(
            item,
            default=_json_default,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise QueueError(f"error marshaling queue item: {exc}") from exc
    return text.encode("utf-8")


def decode_item(data: bytes | str) -> Any:
    """Parse JSON bytes produced by :func:`encode_item`."""
    try:
        return json.loads(data)
    except ValueError as exc:
        raise QueueError(f"error unmarshaling queue item: {exc}") from exc


class QueueAdapter(ABC):
    """Named FIFO queues whose items are stored as JSON."""

    @abstractmethod
    def enqueue(self, queue_name: str, item: Any) -> None:
        """Append an item to the end of the queue."""

    @abstractmethod
    def dequeue(self, queue_name: str) -> Any:
        """Remove and return the item at the head of the queue.

        Raises QueueEmptyError when the queue holds nothing.
        """

    @abstractmethod
    def enqueue_batch(self, queue_name: str, items: Iterable[Any]) -> None:
        """Append several items to the end of the queue, in order."""

    @abstractmethod
    def size(self, queue_name: str) -> int:
        """Return the number of items in the queue."""

    def is_empty(self, queue_name: str) -> bool:
        """Return True when the queue holds no items."""
        return self.size(queue_name) == 0

    @abstractmethod
    def clear(self, queue_name: str) -> None:
        """Remove every item from the queue."""