"""Tasks, task options and the records stored alongside them in queues."""

from __future__ import annotations

import base64
import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

_ZERO_TIME = "0001-01-01T00:00:00Z"
_TIME_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|z|[+-]\d{2}:\d{2})$"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.astimezone()
    text = value.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_time(text: Any) -> datetime | None:
    if text is None or text == _ZERO_TIME:
        return None
    if not isinstance(text, str):
        raise ValueError(f"invalid time value: {text!r}")
    match = _TIME_PATTERN.match(text)
    if match is None:
        raise ValueError(f"invalid time value: {text!r}")
    day, clock, fraction, zone = match.groups()
    micros = (fraction or "")[:6].ljust(6, "0")
    offset = "+00:00" if zone in ("Z", "z") else zone
    return datetime.fromisoformat(f"{day}T{clock}.{micros}{offset}")


@dataclass
class Task:
    """A unit of work: a named handler invocation with a JSON payload."""

    id: str = ""
    name: str = ""
    payload: bytes = b""
    queue: str = ""
    max_retry: int = 0
    retry_count: int = 0
    created_at: datetime | None = None
    process_at: datetime | None = None

    def unmarshal(self) -> Any:
        """Decode the JSON payload; raises ValueError when it is not JSON."""
        return json.loads(self.payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "Name": self.name,
            "Payload": base64.b64encode(self.payload).decode("ascii"),
            "Queue": self.queue,
            "MaxRetry": self.max_retry,
            "RetryCount": self.retry_count,
            "CreatedAt": _format_time(self.created_at),
            "ProcessAt": _format_time(self.process_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Task:
        payload = data.get("Payload")
        return cls(
            id=data.get("ID") or "",
            name=data.get("Name") or "",
            payload=base64.b64decode(payload, validate=True) if payload else b"",
            queue=data.get("Queue") or "",
            max_retry=int(data.get("MaxRetry") or 0),
            retry_count=int(data.get("RetryCount") or 0),
            created_at=_parse_time(data.get("CreatedAt")),
            process_at=_parse_time(data.get("ProcessAt")),
        )


@dataclass
class TaskInfo:
    """What a client reports about a task it has enqueued."""

    id: str
    name: str
    queue: str
    max_retry: int
    state: str
    created_at: datetime | None
    process_at: datetime | None

    def __str__(self) -> str:
        return (
            f"TaskInfo{{ID: {self.id}, Name: {self.name}, Queue: {self.queue}, "
            f"State: {self.state}, ProcessAt: {self.process_at}}}"
        )


@dataclass
class TaskOptions:
    """Settings applied when a task is enqueued."""

    queue: str = "default"
    max_retry: int = 3
    timeout: timedelta = field(default_factory=lambda: timedelta(minutes=30))
    deadline: datetime | None = None
    delay: timedelta = field(default_factory=timedelta)
    process_at: datetime | None = None
    task_id: str = ""


Option = Callable[[TaskOptions], None]


@dataclass
class ScheduledTask:
    """Marker recording when a task is due to run."""

    task_id: str
    process_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "process_at": _format_time(self.process_at)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduledTask:
        return cls(
            task_id=data.get("task_id") or "",
            process_at=_parse_time(data.get("process_at")),
        )


@dataclass
class DeadLetterTask:
    """A task that could not be processed, with the reason it failed."""

    task: Task
    reason: str = ""
    failed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "reason": self.reason,
            "failed_at": _format_time(self.failed_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeadLetterTask:
        return cls(
            task=Task.from_dict(data.get("task") or {}),
            reason=data.get("reason") or "",
            failed_at=_parse_time(data.get("failed_at")),
        )


def new_task(name: str, payload: bytes) -> Task:
    """Create a task with the given name and payload, stamped with the current time."""
    now = _now()
    return Task(name=name, payload=payload, created_at=now, process_at=now)


def with_queue(queue: str) -> Option:
    def apply(options: TaskOptions) -> None:
        options.queue = queue

    return apply


def with_max_retry(n: int) -> Option:
    def apply(options: TaskOptions) -> None:
        options.max_retry = n

    return apply


def with_timeout(d: timedelta) -> Option:
    def apply(options: TaskOptions) -> None:
        options.timeout = d

    return apply


def with_deadline(t: datetime) -> Option:
    def apply(options: TaskOptions) -> None:
        options.deadline = t

    return apply


def with_delay(d: timedelta) -> Option:
    def apply(options: TaskOptions) -> None:
        options.delay = d

    return apply


def with_process_at(t: datetime) -> Option:
    def apply(options: TaskOptions) -> None:
        options.process_at = t

    return apply


def with_task_id(task_id: str) -> Option:
    def apply(options: TaskOptions) -> None:
        options.task_id = task_id

    return apply


def get_default_options() -> TaskOptions:
    """Return fresh default options: queue "default", 3 retries, 30 minute timeout."""
    return TaskOptions()


def apply_options(*args: Option) -> TaskOptions:
    """Apply options in order over the defaults and return the result."""
    options = get_default_options()
    for option in args:
        option(options)
    return options