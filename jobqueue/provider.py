"""Service registration: wires the queue manager into a container."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from jobqueue.adapters.base import QueueAdapter
from jobqueue.config import Config, default_config
from jobqueue.manager import Manager
from jobqueue.scheduler import Scheduler
from jobqueue.task import DeadLetterTask, Task

logger = logging.getLogger(__name__)

_DEAD_LETTER_RETENTION = timedelta(days=7)


class Container:
    """A minimal registry of named service instances."""

    def __init__(self) -> None:
        self._instances: dict[str, Any] = {}

    def instance(self, key: str, value: Any) -> None:
        """Bind ``value`` under ``key``, replacing any earlier binding."""
        self._instances[key] = value

    def bound(self, key: str) -> bool:
        """Return True when something is bound under ``key``."""
        return key in self._instances

    def make(self, key: str) -> Any:
        """Return the service bound under ``key``; raises KeyError if none."""
        try:
            return self._instances[key]
        except KeyError:
            raise KeyError(f"no service bound for {key}") from None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


def _queue_config(service: Any) -> Config:
    if isinstance(service, Config):
        return service
    if isinstance(service, Mapping):
        section = service.get("queue")
        if section is None:
            return default_config()
        if isinstance(section, Config):
            return section
        return Config.from_dict(section)
    raise TypeError(f"unsupported config service: {type(service).__name__}")


def _restore(adapter: QueueAdapter, target: str, temp: str) -> None:
    try:
        adapter.clear(target)
    except Exception as exc:
        logger.warning("Failed to clear queue %s: %s", target, exc)
    try:
        remaining = adapter.size(temp)
    except Exception:
        remaining = 0
    for _ in range(remaining):
        try:
            adapter.enqueue(target, adapter.dequeue(temp))
        except Exception:
            break
    try:
        adapter.clear(temp)
    except Exception as exc:
        logger.warning("Failed to clear queue %s: %s", temp, exc)


class ServiceProvider:
    """Registers the queue manager and its maintenance jobs with an application.

    The application is any object with a ``container`` attribute holding a
    :class:`Container`. The container must provide ``"config"``: a
    :class:`Config`, or a mapping whose ``"queue"`` entry holds the settings.
    """

    def __init__(self) -> None:
        self._providers = ["queue"]

    def register(self, app: Any) -> None:
        """Bind a queue manager under ``"queue"``, adding a scheduler if needed."""
        container = getattr(app, "container", None)
        if container is None:
            return
        if not container.bound("scheduler"):
            container.instance("scheduler", Scheduler())
        service = container.make("config")
        try:
            config = _queue_config(service)
        except (TypeError, ValueError) as exc:
            raise RuntimeError(f"Failed to load queue config: {exc}") from exc
        container.instance("queue", Manager(config, container))

    def boot(self, app: Any) -> None:
        """Give the server the scheduler, add maintenance jobs and start it."""
        if app is None:
            return
        container = getattr(app, "container", None)
        if container is None:
            return
        scheduler = container.make("scheduler")
        manager = container.make("queue")
        server = manager.server()
        if server is not None:
            server.scheduler = scheduler
        self.setup_scheduled_tasks(scheduler, container)
        if not scheduler.is_running():
            scheduler.start_async()

    def setup_scheduled_tasks(self, scheduler: Any, container: Container) -> None:
        """Clean dead letters hourly and promote due retries every five minutes."""

        def cleanup() -> None:
            self.cleanup_failed_jobs(container.make("queue"), container)

        def retry() -> None:
            self.retry_failed_jobs(container.make("queue"), container)

        scheduler.every(1).hours().do(cleanup)
        scheduler.every(5).minutes().do(retry)

    def _configured_queues(self, container: Container, purpose: str) -> list[str] | None:
        try:
            config = _queue_config(container.make("config"))
        except Exception as exc:
            logger.warning("Failed to load queue config for %s: %s", purpose, exc)
            return None
        return list(config.server.queues) or ["default"]

    def cleanup_failed_jobs(self, manager: Any, container: Container) -> int:
        """Drop dead-letter records older than seven days; return how many went."""
        queues = self._configured_queues(container, "cleanup")
        if queues is None:
            return 0
        cutoff = _now() - _DEAD_LETTER_RETENTION
        total = 0
        for queue_name in queues:
            dead = f"{queue_name}:dead"
            adapter = manager.adapter("")
            try:
                size = adapter.size(dead)
            except Exception as exc:
                logger.warning("Failed to get size of dead letter queue %s: %s", dead, exc)
                continue
            if size == 0:
                continue
            logger.info("Cleaning up dead letter queue %s with %d tasks", dead, size)
            temp = f"{queue_name}:dead:temp"
            removed = 0
            for _ in range(size):
                try:
                    record = DeadLetterTask.from_dict(adapter.dequeue(dead))
                except Exception as exc:
                    logger.warning("Failed to dequeue dead letter task: %s", exc)
                    break
                if record.failed_at is None or _aware(record.failed_at) < cutoff:
                    removed += 1
                    logger.info(
                        "Cleaned up old dead letter task %s (failed at %s)",
                        record.task.id,
                        record.failed_at,
                    )
                    continue
                try:
                    adapter.enqueue(temp, record)
                except Exception as exc:
                    logger.warning(
                        "Failed to preserve dead letter task %s: %s", record.task.id, exc
                    )
            _restore(adapter, dead, temp)
            if removed:
                logger.info(
                    "Cleaned up %d old dead letter tasks from queue %s", removed, queue_name
                )
            total += removed
        return total

    def retry_failed_jobs(self, manager: Any, container: Container) -> int:
        """Move retry tasks that are due to pending; return how many moved."""
        queues = self._configured_queues(container, "retry")
        if queues is None:
            return 0
        total = 0
        for queue_name in queues:
            retry = f"{queue_name}:retry"
            pending = f"{queue_name}:pending"
            adapter = manager.adapter("")
            try:
                size = adapter.size(retry)
            except Exception as exc:
                logger.warning("Failed to get size of retry queue %s: %s", retry, exc)
                continue
            if size == 0:
                continue
            logger.info("Processing retry queue %s with %d tasks", retry, size)
            temp = f"{queue_name}:retry:temp"
            moved = 0
            for _ in range(size):
                try:
                    task = Task.from_dict(adapter.dequeue(retry))
                except Exception as exc:
                    logger.warning("Failed to dequeue retry task: %s", exc)
                    break
                due = task.process_at is None or _now() >= _aware(task.process_at)
                if due:
                    try:
                        adapter.enqueue(pending, task)
                    except Exception as exc:
                        logger.warning(
                            "Failed to move retry task %s to pending queue: %s", task.id, exc
                        )
                        try:
                            adapter.enqueue(temp, task)
                        except Exception:
                            pass
                    else:
                        moved += 1
                        logger.info("Moved retry task %s to pending queue %s", task.id, pending)
                    continue
                try:
                    adapter.enqueue(temp, task)
                except Exception as exc:
                    logger.warning("Failed to preserve retry task %s: %s", task.id, exc)
            _restore(adapter, retry, temp)
            if moved:
                logger.info("Moved %d retry tasks to pending queue %s", moved, queue_name)
            total += moved
        return total

    def requires(self) -> list[str]:
        """Services this provider depends on."""
        return ["config", "redis", "scheduler"]

    def providers(self) -> list[str]:
        """Services this provider binds."""
        return list(self._providers)