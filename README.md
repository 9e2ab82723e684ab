# jobqueue

A small background task queue. Producers put tasks on named queues. Worker threads take them off and run the handler registered for each task name. Queue items are stored as JSON. There are two storage backends:

- **`jobqueue.adapters.memory.MemoryQueue`** keeps queues in process memory. It is thread-safe and is meant for development and tests.
- **`jobqueue.adapters.redis_queue.RedisQueue`** keeps queues in Redis lists. It also offers blocking pops, pipelined batch enqueues, queues that expire, priority queues in sorted sets, and queue inspection.

Both backends implement `jobqueue.adapters.base.QueueAdapter`, which provides `enqueue`, `dequeue`, `enqueue_batch`, `size`, `is_empty` and `clear`. Every queue name gets the adapter's prefix (`"queue:"` by default). `dequeue` on an empty queue raises `QueueEmptyError`. Other backend failures, such as an item that cannot be encoded, raise `QueueError`.

## Installation

```
pip install jobqueue
```

## Enqueueing tasks

```python
from datetime import datetime, timedelta

from jobqueue.client import new_memory_client
from jobqueue.task import with_max_retry, with_queue, with_task_id

with new_memory_client() as client:
    info = client.enqueue(
        "email:send",
        {"to": "user@example.com", "subject": "Hello"},
        with_queue("emails"),
        with_max_retry(3),
    )
    print(info)  # TaskInfo{ID: ..., Name: email:send, Queue: emails, State: pending, ...}

    client.enqueue_in("report:generate", timedelta(minutes=5), {"id": 1})
    client.enqueue_at("cleanup:old-data", datetime.now() + timedelta(hours=1), {})

    client.enqueue("image:resize", {"w": 100}, with_task_id("resize-123"))
```

`Client.enqueue` encodes the payload as JSON and pushes the task onto `<queue>:pending`. It returns a `TaskInfo`. When no id is given, the task gets a random 32-character hex id from `generate_id()`. The defaults come from `get_default_options()`: queue `"default"` and 3 retries.

If the processing time is in the future, as with `enqueue_in`, `enqueue_at` or `with_process_at`, a `ScheduledTask` marker is also pushed onto `<queue>:scheduled`. The task itself is still on the pending list straight away, so workers can pick it up at once.

`Client(adapter)` wraps any adapter. `new_client(redis_client)` wraps a Redis client in a `RedisQueue`.

## Processing tasks

```python
from datetime import timedelta

from jobqueue.adapters.memory import MemoryQueue
from jobqueue.server import Server, ServerOptions

adapter = MemoryQueue("queue:")
server = Server(
    adapter,
    ServerOptions(
        concurrency=5,
        polling_interval=1000,  # milliseconds
        queues=["critical", "default"],
        shutdown_timeout=timedelta(seconds=10),
    ),
)

def send_email(task):
    payload = task.unmarshal()
    ...

server.register_handler("email:send", send_email)
server.start()
...
server.stop()
```

`start()` launches `concurrency` worker threads. Each worker polls the `<queue>:pending` lists in the order the queues are listed. When a worker finds nothing, it sleeps for `polling_interval` milliseconds. If no queues are listed, the server uses `default_queue`, or `"default"` if that is empty too.

`stop()` waits up to `shutdown_timeout` for the workers to finish. Calling `start()` twice, or `stop()` on a server that is not running, raises `ServerError`.

When a task fails:

- If its handler raises, `retry_count` goes up by one. While it is below `max_retry`, the task goes to `<queue>:retry` with `process_at` set *n²* minutes ahead, where *n* is the retry count. Otherwise it goes to the dead-letter list `<queue>:dead` as a `DeadLetterTask` that records the reason and the failure time.
- If no handler is registered for its name, it goes straight to the dead-letter list.

If `server.scheduler` is set before `start()`, the server registers `process_delayed_tasks` to run every 30 seconds and starts the scheduler. `process_delayed_tasks` moves scheduled markers that are due onto the pending list as tasks that carry only the id. The server itself does not move tasks from the retry list back to pending; `ServiceProvider` does that (see below). `new_server(redis_client, options)` builds a server on a `RedisQueue`.

## Redis backend

```python
import redis
from jobqueue.adapters.redis_queue import RedisQueue, connect

queue = RedisQueue(redis.Redis(host="localhost", port=6379), "queue:")

queue.enqueue_with_priority("tasks", {"id": 1}, 10.0)
item = queue.dequeue_from_priority("tasks")      # highest priority first
queue.enqueue_with_ttl("temporary", {"id": 2}, 3600)
queue.enqueue_with_pipeline({"emails": [{"id": 3}], "sms": [{"id": 4}]})
items = queue.multi_dequeue("emails", 10)       # up to 10 items
print(queue.get_queue_info("tasks"))

checked = connect("app:", host="localhost", port=6379)  # pings before returning
```

The other Redis operations are:

- `dequeue_with_timeout` blocks until an item arrives. If none arrives in time, it raises `QueueEmptyError`.
- `ping` checks that the server answers.
- `flush_queues` deletes every key under the prefix and returns how many keys went.
- `RedisQueue.from_provider(provider, prefix)` takes its client from `provider.client()`.
- `is_redis_queue_adapter(adapter)` tells whether an adapter is backed by Redis.

## Scheduler

`jobqueue.scheduler.Scheduler` runs functions at fixed intervals:

```python
from jobqueue.scheduler import Scheduler

scheduler = Scheduler()
scheduler.every(5).minutes().do(lambda: print("tick"))
scheduler.start_async()   # background thread
...
scheduler.stop()
```

`run_pending()` runs the due jobs once, from the calling thread. It returns how many jobs ran.

## Configuration and wiring

`jobqueue.config.default_config()` returns the default settings:

- memory adapter, with prefix `"queue:"`
- 10 workers, polling every 1000 ms
- queues `critical`, `high`, `default` and `low`
- 30 s shutdown timeout
- 3 retries

`Config.from_dict(mapping)` lays a plain mapping over those defaults. Keys are matched case-insensitively, for example `{"server": {"concurrency": 2}}`.

`jobqueue.manager.Manager(config, container=None)` builds the following from a configuration, once each:

- the memory adapter and the Redis adapter
- the adapter chosen by name (`adapter(name)`)
- the `client()`
- the `server()`
- the `scheduler`

The Redis client is looked up in the container under `adapter.redis.provider_key`. If it is not found there, the manager uses a local client for `localhost:6379`.

`jobqueue.provider.ServiceProvider` wires everything into a `Container`. It works with any application object that has a `container` attribute. The container must hold `"config"`, either as a `Config` or as a mapping with a `"queue"` entry.

- `register(app)` binds a `Manager` under `"queue"`. It also adds a `Scheduler` under `"scheduler"` if none is bound.
- `boot(app)` gives the manager's server the scheduler and starts the scheduler. It also adds two maintenance jobs:
  - every hour, `cleanup_failed_jobs` drops dead-letter records older than seven days;
  - every five minutes, `retry_failed_jobs` moves retry tasks whose `process_at` has passed back to their pending lists.

## What it does not do

- There is no command-line program. Workers run inside your own process through `Server`.
- `MemoryQueue` keeps nothing after the process ends. Only `RedisQueue` stores tasks outside the process.
- The `timeout`, `deadline` and `delay` task options are recorded in `TaskOptions`, but the client and server do not act on them. Handlers are not interrupted.
- A future processing time does not hold a task back from workers, because the task is on the pending list at once.