from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from jobqueue.config import Config, ServerConfig
from jobqueue.manager import Manager
from jobqueue.provider import Container, ServiceProvider
from jobqueue.scheduler import Scheduler
from jobqueue.task import DeadLetterTask, Task


def _test_queue_settings():
    return {
        "adapter": {
            "default": "memory",
            "memory": {"prefix": "test_queue:"},
            "redis": {"prefix": "test_queue:", "provider_key": "default"},
        },
        "server": {
            "concurrency": 5,
            "pollingInterval": 500,
            "defaultQueue": "test",
            "strictPriority": True,
            "queues": ["critical", "high", "test", "low"],
            "shutdownTimeout": 10,
            "logLevel": 1,
            "retryLimit": 2,
        },
        "client": {"defaultOptions": {"queue": "test", "maxRetry": 2, "timeout": 15}},
    }


def _app(config_service=None, scheduler=None):
    container = Container()
    if config_service is not None:
        container.instance("config", config_service)
    if scheduler is not None:
        container.instance("scheduler", scheduler)
    return SimpleNamespace(container=container)


def _memory_manager():
    return Manager(Config(), None)


def _ago(**kwargs):
    return datetime.now(timezone.utc) - timedelta(**kwargs)


def test_container_binds_and_makes():
    container = Container()
    assert not container.bound("queue")
    container.instance("queue", 42)
    assert container.bound("queue")
    assert container.make("queue") == 42


def test_container_make_missing_raises():
    with pytest.raises(KeyError):
        Container().make("missing")


def test_register_binds_manager_with_config():
    scheduler = Scheduler()
    app = _app({"queue": _test_queue_settings()}, scheduler)
    provider = ServiceProvider()
    assert "queue" in provider.providers()
    provider.register(app)
    assert app.container.bound("queue")
    manager = app.container.make("queue")
    assert isinstance(manager, Manager)
    assert manager.config.server.concurrency == 5
    assert manager.config.server.queues == ["critical", "high", "test", "low"]
    assert manager.config.client.default_options.queue == "test"
    assert app.container.make("queue") is manager
    assert app.container.make("scheduler") is scheduler


def test_register_accepts_config_instance():
    config = Config(server=ServerConfig(concurrency=7))
    app = _app(config)
    ServiceProvider().register(app)
    assert app.container.make("queue").config is config


def test_register_raises_when_config_missing():
    app = _app()
    with pytest.raises(KeyError):
        ServiceProvider().register(app)


def test_register_raises_on_invalid_config():
    app = _app({"queue": {"server": {"concurrency": "many"}}})
    with pytest.raises(RuntimeError, match="Failed to load queue config"):
        ServiceProvider().register(app)


def test_register_adds_scheduler_when_missing():
    app = _app({"queue": _test_queue_settings()})
    ServiceProvider().register(app)
    assert app.container.bound("scheduler")
    assert isinstance(app.container.make("scheduler"), Scheduler)


def test_boot_sets_scheduler_and_adds_jobs():
    scheduler = Scheduler(tick=0.05)
    app = _app({"queue": _test_queue_settings()}, scheduler)
    provider = ServiceProvider()
    provider.register(app)
    try:
        provider.boot(app)
        manager = app.container.make("queue")
        assert manager.server().scheduler is scheduler
        intervals = sorted(job.interval for job in scheduler.jobs)
        assert intervals == [timedelta(minutes=5), timedelta(hours=1)]
        assert scheduler.is_running()
    finally:
        scheduler.stop()
    assert not scheduler.is_running()


def test_boot_jobs_run_retry_processing():
    scheduler = Scheduler(tick=0.05)
    app = _app({"queue": {"server": {"queues": ["test"]}}}, scheduler)
    provider = ServiceProvider()
    provider.register(app)
    try:
        provider.boot(app)
    finally:
        scheduler.stop()
    adapter = app.container.make("queue").adapter("")
    adapter.enqueue("test:retry", Task(id="ready", name="test", process_at=_ago(hours=1)))
    retry_job = next(j for j in scheduler.jobs if j.interval == timedelta(minutes=5))
    retry_job.func()
    assert adapter.size("test:retry") == 0
    assert Task.from_dict(adapter.dequeue("test:pending")).id == "ready"


def test_providers_and_requires():
    provider = ServiceProvider()
    assert provider.providers() == ["queue"]
    assert sorted(provider.requires()) == ["config", "redis", "scheduler"]


def test_cleanup_removes_old_dead_letter_tasks():
    container = Container()
    container.instance("config", {"queue": {"server": {"queues": ["test", "another"]}}})
    manager = _memory_manager()
    adapter = manager.adapter("")
    adapter.enqueue(
        "test:dead", DeadLetterTask(task=Task(id="old-task", name="test"), failed_at=_ago(days=8))
    )
    adapter.enqueue(
        "test:dead", DeadLetterTask(task=Task(id="new-task", name="test"), failed_at=_ago(days=3))
    )
    assert adapter.size("test:dead") == 2

    removed = ServiceProvider().cleanup_failed_jobs(manager, container)

    assert removed == 1
    assert adapter.size("test:dead") == 1
    assert adapter.size("test:dead:temp") == 0
    remaining = DeadLetterTask.from_dict(adapter.dequeue("test:dead"))
    assert remaining.task.id == "new-task"


def test_cleanup_handles_empty_queue():
    container = Container()
    container.instance("config", {"queue": {"server": {"queues": ["empty"]}}})
    manager = _memory_manager()
    assert ServiceProvider().cleanup_failed_jobs(manager, container) == 0
    assert manager.adapter("").size("empty:dead") == 0


def test_cleanup_handles_config_error():
    container = Container()
    container.instance("config", {"queue": {"server": {"queues": 5}}})
    manager = _memory_manager()
    adapter = manager.adapter("")
    adapter.enqueue(
        "default:dead", DeadLetterTask(task=Task(id="old"), failed_at=_ago(days=30))
    )
    assert ServiceProvider().cleanup_failed_jobs(manager, container) == 0
    assert adapter.size("default:dead") == 1


def test_retry_moves_ready_tasks_to_pending():
    container = Container()
    container.instance("config", {"queue": {"server": {"queues": ["test"]}}})
    manager = _memory_manager()
    adapter = manager.adapter("")
    adapter.enqueue("test:retry", Task(id="ready-task", name="test", process_at=_ago(hours=1)))
    adapter.enqueue(
        "test:retry",
        Task(id="not-ready-task", name="test", process_at=_ago(hours=-1)),
    )
    assert adapter.size("test:retry") == 2
    assert adapter.size("test:pending") == 0

    moved = ServiceProvider().retry_failed_jobs(manager, container)

    assert moved == 1
    assert adapter.size("test:retry") == 1
    assert adapter.size("test:pending") == 1
    assert Task.from_dict(adapter.dequeue("test:pending")).id == "ready-task"
    assert Task.from_dict(adapter.dequeue("test:retry")).id == "not-ready-task"


def test_retry_handles_empty_queue():
    container = Container()
    container.instance("config", {"queue": {"server": {"queues": ["empty"]}}})
    manager = _memory_manager()
    assert ServiceProvider().retry_failed_jobs(manager, container) == 0
    assert manager.adapter("").size("empty:retry") == 0
    assert manager.adapter("").size("empty:pending") == 0