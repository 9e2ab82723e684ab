"""Queue backend stored in Redis lists, with Redis-only extras."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any, TypeGuard

import redis
from redis.exceptions import RedisError

from jobqueue.adapters.base import (
    QueueAdapter,
    QueueEmptyError,
    QueueError,
    decode_item,
    encode_item,
)

DEFAULT_PREFIX = "queue:"
_PRIORITY_SUFFIX = ":priority"


def _encode(item: Any, context: str) -> bytes:
    try:
        return encode_item(item)
    except QueueError as exc:
        raise QueueError(f"{context}: {exc.__cause__}") from exc.__cause__


def _seconds(value: float | timedelta) -> float | int:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    return int(seconds) if seconds.is_integer() else seconds


class RedisQueue(QueueAdapter):
    """Named FIFO queues kept in Redis lists under a common key prefix.

    Besides the plain queue operations it offers blocking pops, pipelined
    batches, expiring queues, priority queues in sorted sets and monitoring.
    The Redis client is available as ``client`` for direct use.
    """

    def __init__(self, client: Any, prefix: str = DEFAULT_PREFIX) -> None:
        self.client = client
        self.prefix = prefix or DEFAULT_PREFIX

    @classmethod
    def from_provider(cls, provider: Any, prefix: str = DEFAULT_PREFIX) -> RedisQueue:
        """Build a queue from a provider whose ``client()`` returns a Redis client."""
        try:
            client = provider.client()
        except Exception as exc:
            raise QueueError(f"failed to get Redis client from provider: {exc}") from exc
        return cls(client, prefix)

    def _key(self, queue_name: str) -> str:
        return self.prefix + queue_name

    def _priority_key(self, queue_name: str) -> str:
        return self._key(queue_name + _PRIORITY_SUFFIX)

    def enqueue(self, queue_name: str, item: Any) -> None:
        data = encode_item(item)
        self.client.rpush(self._key(queue_name), data)

    def dequeue(self, queue_name: str) -> Any:
        data = self.client.lpop(self._key(queue_name))
        if data is None:
            raise QueueEmptyError(queue_name)
        return decode_item(data)

    def enqueue_batch(self, queue_name: str, items: Iterable[Any]) -> None:
        values = [
            _encode(item, f"error marshaling queue item at index {index}")
            for index, item in enumerate(items)
        ]
        if values:
            self.client.rpush(self._key(queue_name), *values)

    def size(self, queue_name: str) -> int:
        return int(self.client.llen(self._key(queue_name)))

    def clear(self, queue_name: str) -> None:
        self.client.delete(self._key(queue_name))

    def dequeue_with_timeout(self, queue_name: str, timeout: float | timedelta) -> Any:
        """Pop the head item, waiting up to ``timeout`` for one to arrive."""
        result = self.client.blpop([self._key(queue_name)], timeout=_seconds(timeout))
        if result is None:
            raise QueueEmptyError(queue_name, "timeout waiting for queue item")
        if len(result) < 2:
            raise QueueError("unexpected response format from redis")
        return decode_item(result[1])

    def enqueue_with_pipeline(self, items: Mapping[str, Iterable[Any]]) -> None:
        """Append items to several queues in one round trip."""
        if not items:
            return
        pipe = self.client.pipeline()
        for queue_name, queue_items in items.items():
            values = [
                _encode(
                    item,
                    f"error marshaling queue item for queue {queue_name} at index {index}",
                )
                for index, item in enumerate(queue_items)
            ]
            if values:
                pipe.rpush(self._key(queue_name), *values)
        pipe.execute()

    def enqueue_with_ttl(
        self, queue_name: str, item: Any, ttl: float | timedelta
    ) -> None:
        """Append an item and set the queue to expire after ``ttl``."""
        data = encode_item(item)
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        key = self._key(queue_name)
        pipe = self.client.pipeline()
        pipe.rpush(key, data)
        pipe.expire(key, ttl)
        pipe.execute()

    def enqueue_with_priority(self, queue_name: str, item: Any, priority: float) -> None:
        """Add an item to the priority queue; higher priorities come out first."""
        data = _encode(item, "error marshaling priority queue item")
        self.client.zadd(self._priority_key(queue_name), {data: float(priority)})

    def dequeue_from_priority(self, queue_name: str) -> Any:
        """Remove and return the item with the highest priority."""
        popped = self.client.zpopmax(self._priority_key(queue_name))
        if not popped:
            raise QueueEmptyError(queue_name, "priority queue is empty")
        member, _score = popped[0]
        return decode_item(member)

    def get_queue_info(self, queue_name: str) -> dict[str, Any]:
        """Report sizes and expiry of the queue and its priority queue."""
        key = self._key(queue_name)
        pipe = self.client.pipeline()
        pipe.llen(key)
        pipe.ttl(key)
        pipe.zcard(self._priority_key(queue_name))
        try:
            size, ttl, priority_size = pipe.execute()
        except RedisError as exc:
            raise QueueError(f"error getting queue info: {exc}") from exc
        size, ttl, priority_size = int(size), int(ttl), int(priority_size)
        return {
            "name": queue_name,
            "size": size,
            "priority_size": priority_size,
            "total_size": size + priority_size,
            "ttl_seconds": float(ttl) if ttl > 0 else 0.0,
            "has_ttl": ttl > 0,
            "is_empty": size == 0 and priority_size == 0,
        }

    def multi_dequeue(self, queue_name: str, count: int) -> list[Any]:
        """Remove and return up to ``count`` items from the head of the queue."""
        if count <= 0:
            raise ValueError("count must be positive")
        data = self.client.lpop(self._key(queue_name), count)
        return [decode_item(entry) for entry in data or []]

    def ping(self) -> None:
        """Check that the Redis server answers."""
        self.client.ping()

    def flush_queues(self) -> int:
        """Delete every key under this queue's prefix; return how many went."""
        pattern = self.prefix + "*"
        try:
            keys = self.client.keys(pattern)
        except RedisError as exc:
            raise QueueError(f"error getting keys with pattern {pattern}: {exc}") from exc
        if not keys:
            return 0
        try:
            return int(self.client.delete(*keys))
        except RedisError as exc:
            raise QueueError(f"error deleting keys: {exc}") from exc


def is_redis_queue_adapter(adapter: QueueAdapter) -> TypeGuard[RedisQueue]:
    """Return True when the adapter is backed by Redis."""
    return isinstance(adapter, RedisQueue)


def connect(prefix: str = DEFAULT_PREFIX, **kwargs: Any) -> RedisQueue:
    """Open a Redis connection with ``kwargs``, check it, and wrap it in a queue."""
    client = redis.Redis(**kwargs)
    try:
        client.ping()
    except RedisError as exc:
        client.close()
        raise QueueError(f"failed to connect to redis: {exc}") from exc
    return RedisQueue(client, prefix)