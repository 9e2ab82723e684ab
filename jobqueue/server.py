"""Consumer side: worker threads that take tasks off queues and run handlers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from jobqueue.adapters.base import QueueAdapter, QueueEmptyError
from jobqueue.adapters.redis_queue import RedisQueue
from jobqueue.task import DeadLetterTask, ScheduledTask, Task

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[Task], Any]

_REDIS_PREFIX = "queue:"
_DELAYED_CHECK_SECONDS = 30


class ServerError(Exception):
    """Raised when the server is started or stopped in the wrong state."""


@dataclass
class ServerOptions:
    """Worker server settings.

    polling_interval is in milliseconds; queues are listed in priority order.
    """

    concurrency: int = 0
    polling_interval: int = 0
    default_queue: str = ""
    strict_priority: bool = False
    queues: list[str] = field(default_factory=list)
    shutdown_timeout: timedelta = field(default_factory=timedelta)
    log_level: int = 0
    retry_limit: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


class Server:
    """Runs registered handlers for tasks taken from the adapter's pending lists.

    Failed tasks go to the queue's retry list with a quadratic backoff until
    their retry limit is reached, then to the dead letter list. When a
    scheduler is set, scheduled markers are promoted to pending every 30
    seconds while the server runs.
    """

    def __init__(self, adapter: QueueAdapter, options: ServerOptions | None = None) -> None:
        self.adapter = adapter
        self.options = options if options is not None else ServerOptions()
        queues = list(self.options.queues)
        if not queues:
            queues.append(self.options.default_queue or "default")
        self._queues = tuple(queues)
        self._handlers: dict[str, HandlerFunc] = {}
        self._handlers_lock = threading.Lock()
        self._lock = threading.Lock()
        self._scheduler: Any = None
        self._started = False
        self._stop_event = threading.Event()
        self._workers: list[threading.Thread] = []

    @property
    def queues(self) -> tuple[str, ...]:
        """The queues polled, highest priority first."""
        return self._queues

    @property
    def handlers(self) -> dict[str, HandlerFunc]:
        """A snapshot of the registered handlers by task name."""
        with self._handlers_lock:
            return dict(self._handlers)

    @property
    def running(self) -> bool:
        """True between a successful start and the matching stop."""
        with self._lock:
            return self._started

    @property
    def scheduler(self) -> Any:
        """The scheduler used for delayed tasks, or None."""
        with self._lock:
            return self._scheduler

    @scheduler.setter
    def scheduler(self, value: Any) -> None:
        with self._lock:
            self._scheduler = value

    def register_handler(self, task_name: str, handler: HandlerFunc) -> None:
        """Register the handler run for tasks named ``task_name``."""
        with self._handlers_lock:
            self._handlers[task_name] = handler

    def register_handlers(self, handlers: Mapping[str, HandlerFunc]) -> None:
        """Register several handlers at once."""
        for task_name, handler in handlers.items():
            self.register_handler(task_name, handler)

    def start(self) -> None:
        """Start the worker threads; raises ServerError if already started."""
        with self._lock:
            if self._started:
                raise ServerError("server already started")
            self._started = True
            logger.info("Starting queue worker server...")
            self._stop_event = threading.Event()
            self._workers = [
                threading.Thread(
                    target=self._worker_loop,
                    args=(worker_id, self._stop_event),
                    name=f"jobqueue-worker-{worker_id}",
                    daemon=True,
                )
                for worker_id in range(self.options.concurrency)
            ]
            for worker in self._workers:
                worker.start()
            if self._scheduler is not None:
                self._setup_delayed_task_scheduler(self._scheduler)
            logger.info(
                "Queue worker server started with %d workers", self.options.concurrency
            )

    def stop(self) -> None:
        """Stop the workers, waiting up to the shutdown timeout for them."""
        with self._lock:
            if not self._started:
                raise ServerError("server not started")
            logger.info("Stopping queue worker server...")
            self._stop_event.set()

            deadline = time.monotonic() + self.options.shutdown_timeout.total_seconds()
            for worker in self._workers:
                worker.join(max(0.0, deadline - time.monotonic()))
            if any(worker.is_alive() for worker in self._workers):
                logger.warning("Shutdown timeout reached, forcing stop")
            else:
                logger.info("All workers stopped gracefully")
            self._workers = []

            if self._scheduler is not None and self._scheduler.is_running():
                self._scheduler.stop()

            self._started = False
            logger.info("Queue worker server stopped")

    def _setup_delayed_task_scheduler(self, scheduler: Any) -> None:
        def check_delayed() -> None:
            if self.running:
                self.process_delayed_tasks()

        scheduler.every(_DELAYED_CHECK_SECONDS).seconds().do(check_delayed)
        if not scheduler.is_running():
            scheduler.start_async()

    def _worker_loop(self, worker_id: int, stop_event: threading.Event) -> None:
        logger.debug("Worker %d started", worker_id)
        try:
            while not stop_event.is_set():
                task = self._fetch_task()
                if task is not None:
                    self._process_task(worker_id, task)
                else:
                    stop_event.wait(self.options.polling_interval / 1000)
        except Exception:
            logger.exception("Worker %d recovered from failure", worker_id)
        logger.debug("Worker %d stopping", worker_id)

    def _fetch_task(self) -> Task | None:
        for queue_name in self._queues:
            pending = f"{queue_name}:pending"
            try:
                data = self.adapter.dequeue(pending)
            except QueueEmptyError:
                continue
            except Exception as exc:
                logger.warning("Error dequeuing from queue %s: %s", pending, exc)
                continue
            try:
                task = Task.from_dict(data)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Error dequeuing from queue %s: %s", pending, exc)
                continue
            logger.debug("Successfully dequeued task %s from queue %s", task.id, pending)
            return task
        return None

    def _process_task(self, worker_id: int, task: Task) -> None:
        logger.info(
            "Worker %d processing task: %s (type: %s)", worker_id, task.id, task.name
        )
        with self._handlers_lock:
            handler = self._handlers.get(task.name)
        if handler is None:
            message = f"no handler found for task type: {task.name}"
            logger.warning(message)
            self._move_to_dead_letter_queue(task, message)
            return

        start = time.monotonic()
        try:
            handler(task)
        except Exception as exc:
            logger.warning(
                "Worker %d failed to process task %s: %s (took %.3fs)",
                worker_id,
                task.id,
                exc,
                time.monotonic() - start,
            )
            self._handle_failed_task(task, exc)
        else:
            logger.info(
                "Worker %d completed task %s successfully (took %.3fs)",
                worker_id,
                task.id,
                time.monotonic() - start,
            )

    def process_delayed_tasks(self) -> None:
        """Move scheduled tasks that are due onto their queue's pending list.

        Each queue's scheduled list is read from the head until a marker that
        is not yet due is found; that marker is put back.
        """
        for queue_name in self._queues:
            scheduled = f"{queue_name}:scheduled"
            pending = f"{queue_name}:pending"
            while True:
                try:
                    marker = ScheduledTask.from_dict(self.adapter.dequeue(scheduled))
                except Exception:
                    break

                now = _now()
                if marker.process_at is not None and now < _aware(marker.process_at):
                    try:
                        self.adapter.enqueue(scheduled, marker)
                    except Exception as exc:
                        logger.warning(
                            "Failed to put back scheduled task %s: %s", marker.task_id, exc
                        )
                    break

                task = Task(id=marker.task_id, created_at=now, process_at=now, retry_count=0)
                try:
                    self.adapter.enqueue(pending, task)
                except Exception as exc:
                    logger.warning(
                        "Failed to move scheduled task %s to pending queue: %s",
                        marker.task_id,
                        exc,
                    )
                else:
                    logger.info(
                        "Moved scheduled task %s to pending queue %s", marker.task_id, pending
                    )

    def _handle_failed_task(self, task: Task, error: Exception) -> None:
        task.retry_count += 1
        logger.info(
            "Task %s failed (attempt %d/%d): %s",
            task.id,
            task.retry_count,
            task.max_retry,
            error,
        )
        if task.retry_count < task.max_retry:
            delay = timedelta(minutes=task.retry_count * task.retry_count)
            task.process_at = _now() + delay
            try:
                self.adapter.enqueue(f"{task.queue}:retry", task)
            except Exception as exc:
                logger.warning("Failed to enqueue task %s for retry: %s", task.id, exc)
                self._move_to_dead_letter_queue(task, str(exc))
            else:
                logger.info(
                    "Task %s scheduled for retry %d in %s", task.id, task.retry_count, delay
                )
        else:
            logger.info(
                "Task %s exceeded max retry limit (%d), moving to dead letter queue",
                task.id,
                task.max_retry,
            )
            self._move_to_dead_letter_queue(task, str(error))

    def _move_to_dead_letter_queue(self, task: Task, reason: str) -> None:
        record = DeadLetterTask(task=replace(task), reason=reason, failed_at=_now())
        dead = f"{task.queue}:dead"
        try:
            self.adapter.enqueue(dead, record)
        except Exception as exc:
            logger.warning("Failed to move task %s to dead letter queue: %s", task.id, exc)
        else:
            logger.info("Task %s moved to dead letter queue %s", task.id, dead)


def new_server(redis_client: Any, options: ServerOptions | None = None) -> Server:
    """Create a server reading tasks from Redis through ``redis_client``."""
    return Server(RedisQueue(redis_client, _REDIS_PREFIX), options)