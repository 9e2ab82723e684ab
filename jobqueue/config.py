"""Configuration for adapters, the worker server and the client."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields, is_dataclass, replace
from typing import Any


def _setting(key: str, default: Any = MISSING, factory: Any = MISSING) -> Any:
    return field(default=default, default_factory=factory, metadata={"key": key})


@dataclass
class MemoryConfig:
    """Settings for the in-memory adapter."""

    prefix: str = _setting("prefix", "")


@dataclass
class RedisConfig:
    """Settings for the Redis adapter.

    provider_key names the container entry that supplies the Redis client.
    """

    prefix: str = _setting("prefix", "")
    provider_key: str = _setting("provider_key", "")


@dataclass
class AdapterConfig:
    """Which adapter to use ("memory" or "redis") and settings for each."""

    default: str = _setting("default", "")
    memory: MemoryConfig = _setting("memory", factory=MemoryConfig)
    redis: RedisConfig = _setting("redis", factory=RedisConfig)


@dataclass
class ServerConfig:
    """Worker server settings.

    polling_interval is in milliseconds, shutdown_timeout in seconds; queues
    are listed in priority order.
    """

    concurrency: int = _setting("concurrency", 0)
    polling_interval: int = _setting("pollingInterval", 0)
    default_queue: str = _setting("defaultQueue", "")
    strict_priority: bool = _setting("strictPriority", False)
    queues: list[str] = _setting("queues", factory=list)
    shutdown_timeout: int = _setting("shutdownTimeout", 0)
    log_level: int = _setting("logLevel", 0)
    retry_limit: int = _setting("retryLimit", 0)


@dataclass
class ClientDefaultOptions:
    """Default task options for the client; timeout is in minutes."""

    queue: str = _setting("queue", "")
    max_retry: int = _setting("maxRetry", 0)
    timeout: int = _setting("timeout", 0)


@dataclass
class ClientConfig:
    """Client settings."""

    default_options: ClientDefaultOptions = _setting(
        "defaultOptions", factory=ClientDefaultOptions
    )


@dataclass
class Config:
    """Complete queue configuration."""

    adapter: AdapterConfig = _setting("adapter", factory=AdapterConfig)
    server: ServerConfig = _setting("server", factory=ServerConfig)
    client: ClientConfig = _setting("client", factory=ClientConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        """Overlay a mapping (keys matched case-insensitively) onto the defaults."""
        return _overlay(default_config(), data, "queue")


def _coerce(current: Any, value: Any, where: str) -> Any:
    if value is None:
        return current
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise TypeError(f"{where}: expected a boolean, got {type(value).__name__}")
        return value
    if isinstance(current, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{where}: expected an integer, got {type(value).__name__}")
        return value
    if isinstance(current, str):
        if not isinstance(value, str):
            raise TypeError(f"{where}: expected a string, got {type(value).__name__}")
        return value
    if isinstance(current, list):
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(entry, str) for entry in value
        ):
            raise TypeError(f"{where}: expected a list of strings")
        return list(value)
    raise TypeError(f"{where}: unsupported setting")


def _overlay(instance: Any, data: Any, path: str) -> Any:
    if not isinstance(data, Mapping):
        raise TypeError(f"{path}: expected a mapping, got {type(data).__name__}")
    lowered = {str(key).lower(): value for key, value in data.items()}
    changes: dict[str, Any] = {}
    for setting in fields(instance):
        key = setting.metadata["key"]
        if key.lower() not in lowered:
            continue
        value = lowered[key.lower()]
        current = getattr(instance, setting.name)
        where = f"{path}.{key}"
        if is_dataclass(current):
            if value is not None:
                changes[setting.name] = _overlay(current, value, where)
        else:
            changes[setting.name] = _coerce(current, value, where)
    return replace(instance, **changes)


def default_config() -> Config:
    """Return the default configuration."""
    return Config(
        adapter=AdapterConfig(
            default="memory",
            memory=MemoryConfig(prefix="queue:"),
            redis=RedisConfig(prefix="queue:", provider_key="redis"),
        ),
        server=ServerConfig(
            concurrency=10,
            polling_interval=1000,
            default_queue="default",
            strict_priority=True,
            queues=["critical", "high", "default", "low"],
            shutdown_timeout=30,
            log_level=1,
            retry_limit=3,
        ),
        client=ClientConfig(
            default_options=ClientDefaultOptions(queue="default", max_retry=3, timeout=30)
        ),
    )