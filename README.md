# answer-service

A small event-driven service for form answers. It takes answer requests from a
RabbitMQ queue, stores answers in a MySQL/MariaDB database through SQLAlchemy,
caches them in Redis and publishes `answer.created` / `answer.deleted` events.
A `/health` endpoint reports whether the broker and cache connections are
alive.

## Installation

```
pip install .
```

The database URL built by `answer_service.app.build_dsn` uses SQLAlchemy's
`mysql+pymysql` dialect, so the PyMySQL driver has to be installed next to the
package for the service to reach its database:

```
pip install pymysql
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## Running

The service reads its database settings from the environment:

| Variable      | Meaning             |
|---------------|---------------------|
| `DB_USER`     | database user       |
| `DB_PASSWORD` | database password   |
| `DB_HOST`     | database host       |
| `DB_PORT`     | database port       |
| `DB_NAME`     | database name       |

RabbitMQ and Redis addresses come from `answer_service.config.new_config()`
(`amqp://rabbitmq:5672` and `redis:6379`). Start the service with:

```
answer-service
```

It connects to the database (up to 10 attempts, 10 seconds apart), creates the
`answers` and `answer_elements` tables when they are missing, opens two
RabbitMQ connections (one for publishing, one for consuming) and a Redis
connection, then runs until it gets SIGINT or SIGTERM. On shutdown it closes
the publisher, the cache and the consumer. Logs go to the console and, as JSON
lines, to `app.log` in the working directory.

The health endpoint is served on port 8080; any method on `/health` answers
`OK` when the publisher's connection is open and Redis answers a ping, and
`UNHEALTHY` otherwise. Other paths answer 404.

## Events

Incoming events are JSON objects with `id`, `type`, `payload` (base64) and
`timestamp`. Two request types are handled:

- `request.answer.create`: the payload is an answer with `id`, `form_id`,
  `user_id`, `is_complete` and `elements` (each with `question_order_number`
  and `content`). The answer is stored, cached under `answer:<id>` as JSON, and
  an `answer.created` event carrying the answer is published.
- `request.answer.delete`: the payload is `{"id": "<answer id>"}`. The answer
  and its elements are deleted, its cache entry is dropped, and an
  `answer.deleted` event carrying `{"id": ...}` is published.

Other event types are logged and skipped. Cache and publish steps are retried
up to three times each.

The consumer reads from the queue named under `"request"` in the
configuration's `queues`, and the publisher sends to the exchange named under
`"output"` in its `exchanges`. The default configuration names neither, so
with it both fall back to the empty name (the broker's default exchange and
queue name). Build a `Config` with those entries to route elsewhere.

## Using the pieces as a library

```python
from answer_service.entities import Answer
from answer_service.retrier import do

answer = Answer.from_dict({
    "form_id": "00000000-0000-0000-0000-000000000001",
    "user_id": "00000000-0000-0000-0000-000000000002",
})
answer.ensure_id()
answer.add_element(1, "yes")
answer.validate()          # raises ValidationError when form or user ID is missing

do(3, 0.5, lambda: None)   # run an operation up to 3 times
```

Modules:

- `answer_service.entities`: `Answer`, `Element`, `Event`, `new_event`,
  `ValidationError`.
- `answer_service.retrier`: `connect`, `multi_connects`, `do`, `RetryOptions`.
- `answer_service.service`: `Service` ties a repository, a cacher and a
  publisher together; anything with the matching methods can stand in for
  them, which makes it easy to run against in-memory fakes. Failures raise
  `ServiceError`, `AnswerNilError` or `InvalidIDError`.
- `answer_service.repository`: `Repository` over a SQLAlchemy engine.
- `answer_service.cacher`: `RedisCacher`.
- `answer_service.publisher`: `AmqpPublisher`.
- `answer_service.consumer`: `Consumer`, which reconnects on its own.
- `answer_service.listener`: `Listener`, which dispatches events to a `Service`.
- `answer_service.health`: `HealthChecker`.
- `answer_service.closer`: `Shutdown`.
- `answer_service.logger`: `init`, `get`, `sync`, `LoggerConfig`.

## What it does not do

The service only writes: it has no interface for reading answers back.
`RedisCacher.get_cache_for` can fetch a cached answer, but nothing in the
service exposes it, and the repository offers no queries beyond insert and
delete. There is no command-line configuration; addresses and names come from
the environment and `new_config()` only.