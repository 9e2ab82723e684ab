"""Background task queue: clients, worker server, scheduler and memory or Redis storage."""

__version__ = "0.1.0"