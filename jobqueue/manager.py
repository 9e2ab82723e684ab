"""Builds and caches the queue adapters, client, server and scheduler."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import redis

from jobqueue.adapters.base import QueueAdapter
from jobqueue.adapters.memory import MemoryQueue
from jobqueue.adapters.redis_queue import RedisQueue
from jobqueue.client import Client, new_client
from jobqueue.config import Config
from jobqueue.scheduler import Scheduler
from jobqueue.server import Server, ServerOptions, new_server

logger = logging.getLogger(__name__)

_DEFAULT_PROVIDER_KEY = "redis"
_FALLBACK_HOST = "localhost"
_FALLBACK_PORT = 6379


class Manager:
    """Creates the queue components from a configuration, each only once.

    When a container is given, the Redis client is looked up in it under the
    configured provider key; a local default client is used otherwise.
    """

    def __init__(self, config: Config, container: Any = None) -> None:
        self.config = config
        self._container = container
        self._redis_client: Any = None
        self._memory_queue: MemoryQueue | None = None
        self._redis_queue: RedisQueue | None = None
        self._client: Client | None = None
        self._server: Server | None = None
        self._scheduler: Any = None

    def _client_from_container(self) -> Any:
        if self._container is None:
            return None
        key = self.config.adapter.redis.provider_key or _DEFAULT_PROVIDER_KEY
        try:
            service = self._container.make(key)
        except Exception as exc:
            logger.debug("No Redis provider under %r: %s", key, exc)
            return None
        if isinstance(service, redis.Redis):
            return service
        for factory_name in ("universal_client", "client"):
            factory = getattr(service, factory_name, None)
            if not callable(factory):
                continue
            try:
                client = factory()
            except Exception as exc:
                logger.debug("Redis provider %s() failed: %s", factory_name, exc)
                continue
            if client is not None:
                return client
        return None

    def redis_client(self) -> Any:
        """Return the Redis client, from the container provider if one exists."""
        if self._redis_client is None:
            client = self._client_from_container()
            if client is None:
                client = redis.Redis(host=_FALLBACK_HOST, port=_FALLBACK_PORT)
            self._redis_client = client
        return self._redis_client

    def memory_adapter(self) -> QueueAdapter:
        """Return the in-memory adapter."""
        if self._memory_queue is None:
            self._memory_queue = MemoryQueue(self.config.adapter.memory.prefix)
        return self._memory_queue

    def redis_adapter(self) -> QueueAdapter:
        """Return the Redis adapter."""
        if self._redis_queue is None:
            self._redis_queue = RedisQueue(
                self.redis_client(), self.config.adapter.redis.prefix
            )
        return self._redis_queue

    def adapter(self, name: str = "") -> QueueAdapter:
        """Return the adapter called ``name``, or the configured default.

        Unknown names fall back to the in-memory adapter.
        """
        name = name or self.config.adapter.default
        if name == "redis":
            return self.redis_adapter()
        return self.memory_adapter()

    def client(self) -> Client:
        """Return the task client for the default adapter."""
        if self._client is None:
            default = self.config.adapter.default
            if default == "redis":
                self._client = new_client(self.redis_client())
            else:
                self._client = Client(self.adapter(default))
        return self._client

    def server(self) -> Server:
        """Return the worker server configured from the server settings."""
        if self._server is None:
            settings = self.config.server
            options = ServerOptions(
                concurrency=settings.concurrency,
                polling_interval=settings.polling_interval,
                default_queue=settings.default_queue,
                strict_priority=settings.strict_priority,
                queues=list(settings.queues),
                shutdown_timeout=timedelta(seconds=settings.shutdown_timeout),
                log_level=settings.log_level,
                retry_limit=settings.retry_limit,
            )
            default = self.config.adapter.default
            if default == "redis":
                self._server = new_server(self.redis_client(), options)
            else:
                self._server = Server(self.adapter(default), options)
        return self._server

    @property
    def scheduler(self) -> Any:
        """The scheduler used for recurring queue jobs, created on first use."""
        if self._scheduler is None:
            self._scheduler = Scheduler()
        return self._scheduler

    @scheduler.setter
    def scheduler(self, value: Any) -> None:
        self._scheduler = value