from datetime import timedelta

import redis

from jobqueue.adapters.memory import MemoryQueue
from jobqueue.adapters.redis_queue import RedisQueue
from jobqueue.client import Client
from jobqueue.config import (
    AdapterConfig,
    Config,
    MemoryConfig,
    RedisConfig,
    ServerConfig,
    default_config,
)
from jobqueue.manager import Manager
from jobqueue.provider import Container
from jobqueue.scheduler import Scheduler
from jobqueue.server import Server


def _server_config():
    return Config(server=ServerConfig(default_queue="default", concurrency=5))


def _redis_config(default=""):
    return Config(
        adapter=AdapterConfig(
            default=default, redis=RedisConfig(prefix="test:", provider_key="redis")
        )
    )


class _Provider:
    def __init__(self, client=None, universal=None, fail_universal=False):
        self._client = client
        self._universal = universal
        self._fail_universal = fail_universal

    def universal_client(self):
        if self._fail_universal:
            raise RuntimeError("no universal client")
        return self._universal

    def client(self):
        return self._client


def test_scheduler_is_created_and_cached():
    manager = Manager(_server_config())
    scheduler = manager.scheduler
    assert isinstance(scheduler, Scheduler)
    assert manager.scheduler is scheduler


def test_external_scheduler_is_used():
    manager = Manager(_server_config())
    external = Scheduler()
    manager.scheduler = external
    assert manager.scheduler is external


def test_scheduler_from_manager_registers_job():
    manager = Manager(_server_config())
    external = Scheduler()
    manager.scheduler = external
    manager.scheduler.every(5).minutes().do(lambda: None)
    jobs = external.jobs
    assert len(jobs) == 1
    assert jobs[0].interval == timedelta(minutes=5)


def test_redis_client_fallback_is_cached():
    manager = Manager(_redis_config())
    client = manager.redis_client()
    assert isinstance(client, redis.Redis)
    assert manager.redis_client() is client


def test_redis_client_taken_from_container_provider():
    sentinel = object()
    container = Container()
    container.instance("redis", _Provider(client=sentinel, fail_universal=True))
    manager = Manager(_redis_config(), container)
    assert manager.redis_client() is sentinel


def test_redis_client_prefers_universal_client():
    universal = object()
    container = Container()
    container.instance("redis", _Provider(client=object(), universal=universal))
    manager = Manager(_redis_config(), container)
    assert manager.redis_client() is universal


def test_redis_client_uses_configured_provider_key():
    direct = redis.Redis(host="localhost", port=6379)
    container = Container()
    container.instance("cache", direct)
    config = Config(adapter=AdapterConfig(redis=RedisConfig(provider_key="cache")))
    manager = Manager(config, container)
    assert manager.redis_client() is direct


def test_redis_adapter_is_cached_with_prefix():
    manager = Manager(_redis_config())
    adapter = manager.redis_adapter()
    assert isinstance(adapter, RedisQueue)
    assert adapter.prefix == "test:"
    assert manager.redis_adapter() is adapter


def test_memory_adapter_uses_prefix():
    config = Config(adapter=AdapterConfig(memory=MemoryConfig(prefix="mem:")))
    manager = Manager(config)
    adapter = manager.memory_adapter()
    assert isinstance(adapter, MemoryQueue)
    assert adapter.prefix == "mem:"
    assert manager.memory_adapter() is adapter


def test_adapter_selection():
    manager = Manager(_redis_config(default="memory"))
    assert manager.adapter("redis") is manager.redis_adapter()
    assert manager.adapter("memory") is manager.memory_adapter()
    assert manager.adapter("unknown") is manager.memory_adapter()
    assert manager.adapter("") is manager.memory_adapter()


def test_client_with_redis_default_is_cached():
    manager = Manager(_redis_config(default="redis"))
    client = manager.client()
    assert isinstance(client, Client)
    assert isinstance(client.adapter, RedisQueue)
    assert manager.client() is client


def test_client_with_memory_default_is_cached():
    config = Config(
        adapter=AdapterConfig(default="memory", memory=MemoryConfig(prefix="test:"))
    )
    manager = Manager(config)
    client = manager.client()
    assert client.adapter is manager.memory_adapter()
    assert manager.client() is client


def test_server_built_from_config():
    manager = Manager(default_config())
    server = manager.server()
    assert isinstance(server, Server)
    assert server.adapter is manager.memory_adapter()
    assert server.options.concurrency == 10
    assert server.options.polling_interval == 1000
    assert server.options.shutdown_timeout == timedelta(seconds=30)
    assert server.queues == ("critical", "high", "default", "low")
    assert manager.server() is server


def test_server_with_redis_default():
    manager = Manager(_redis_config(default="redis"))
    server = manager.server()
    assert isinstance(server.adapter, RedisQueue)
    assert server.queues == ("default",)