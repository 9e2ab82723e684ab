"""Producer side: puts tasks on queues for workers to process."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jobqueue.adapters.base import QueueAdapter, QueueError, encode_item
from jobqueue.adapters.memory import MemoryQueue
from jobqueue.adapters.redis_queue import RedisQueue
from jobqueue.task import (
    Option,
    ScheduledTask,
    Task,
    TaskInfo,
    apply_options,
    with_process_at,
)

_PREFIX = "queue:"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


def generate_id() -> str:
    """Return a random 32-character hexadecimal task id."""
    return secrets.token_hex(16)


class Client:
    """Enqueues tasks onto a queue adapter."""

    def __init__(self, adapter: QueueAdapter) -> None:
        self.adapter = adapter

    def enqueue(self, task_name: str, payload: Any, *args: Option) -> TaskInfo:
        """Put a task on its queue's pending list and describe it.

        If the options give a future processing time, a schedule marker is
        also put on the queue's scheduled list.
        """
        options = apply_options(*args)
        now = datetime.now(timezone.utc)

        try:
            payload_bytes = encode_item(payload)
        except QueueError as exc:
            cause = exc.__cause__ or exc
            raise QueueError(f"failed to marshal payload: {cause}") from cause

        task = Task(
            id=options.task_id or generate_id(),
            name=task_name,
            payload=payload_bytes,
            queue=options.queue,
            max_retry=options.max_retry,
            retry_count=0,
            created_at=now,
            process_at=now,
        )

        try:
            self.adapter.enqueue(f"{task.queue}:pending", task)
        except Exception as exc:
            raise QueueError(f"failed to enqueue task: {exc}") from exc

        process_at = options.process_at
        if process_at is not None and _aware(process_at) > datetime.now(timezone.utc):
            marker = ScheduledTask(task_id=task.id, process_at=process_at)
            try:
                self.adapter.enqueue(f"{task.queue}:scheduled", marker)
            except Exception as exc:
                raise QueueError(f"failed to schedule task: {exc}") from exc

        return TaskInfo(
            id=task.id,
            name=task.name,
            queue=task.queue,
            max_retry=task.max_retry,
            state="pending",
            created_at=task.created_at,
            process_at=task.created_at if process_at is None else process_at,
        )

    def enqueue_in(
        self, task_name: str, delay: timedelta, payload: Any, *args: Option
    ) -> TaskInfo:
        """Enqueue a task to be processed after ``delay``."""
        process_at = datetime.now(timezone.utc) + delay
        return self.enqueue(task_name, payload, *args, with_process_at(process_at))

    def enqueue_at(
        self, task_name: str, process_at: datetime, payload: Any, *args: Option
    ) -> TaskInfo:
        """Enqueue a task to be processed at ``process_at``."""
        return self.enqueue(task_name, payload, *args, with_process_at(process_at))

    def close(self) -> None:
        """Release the client; the adapters hold nothing that needs closing."""

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def new_client(redis_client: Any) -> Client:
    """Create a client storing tasks in Redis through ``redis_client``."""
    return Client(RedisQueue(redis_client, _PREFIX))


def new_memory_client() -> Client:
    """Create a client storing tasks in process memory."""
    return Client(MemoryQueue(_PREFIX))