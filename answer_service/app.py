"""Entry point that wires the answer service together and runs it."""

from __future__ import annotations

import argparse
import os
import queue
import signal
import threading
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import pika
import redis
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from . import logger as log
from . import retrier
from .cacher import RedisCacher
from .closer import Shutdown
from .config import new_config
from .consumer import Consumer
from .health import HealthChecker
from .listener import Listener
from .publisher import AmqpPublisher
from .repository import Repository
from .service import Service

EVENT_QUEUE_SIZE = 100
SERVICE_TIMEOUT = 10.0
HEALTH_ADDR = ":8080"


def build_dsn(env: Mapping[str, str] | None = None) -> str:
    """Build the database URL from DB_USER, DB_PASSWORD, DB_HOST, DB_PORT and DB_NAME."""
    source: Mapping[str, str] = os.environ if env is None else env
    user = quote(source.get("DB_USER", ""), safe="")
    db_password = quote(source.get("DB_PASSWORD", ""), safe="")
    host = source.get("DB_HOST", "")
    port = source.get("DB_PORT", "")
    name = source.get("DB_NAME", "")
    return f"mysql+pymysql://{user}:{db_password}@{host}:{port}/{name}?charset=utf8mb4"


def _open_database(dsn: str) -> Engine:
    engine = create_engine(dsn, pool_pre_ping=True)
    try:
        with engine.connect():
            pass
    except Exception:
        engine.dispose()
        raise
    return engine


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, 6379
    return host.strip("[]") or "localhost", int(port)


def _open_redis(addr: str) -> redis.Redis:
    host, port = _split_host_port(addr)
    client = redis.Redis(host=host, port=port, db=0)
    try:
        client.ping()
    except Exception:
        client.close()
        raise
    return client


def _install_signal_handlers(stop: threading.Event) -> dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum: int, frame: Any) -> None:
        stop.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _start(target: Any, *args: Any) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def _serve(stop: threading.Event) -> int:
    logger = log.get()
    cfg = new_config()

    dsn = build_dsn()
    logger.info("connecting to mariadb...", extra={"dsn": dsn})
    try:
        engine = retrier.connect(10, 10, lambda: _open_database(dsn))
    except Exception as exc:
        logger.error(
            "error initialyze database", extra={"dsn": dsn, "error": str(exc)}
        )
        return 1
    logger.info("connected to mariadb", extra={"dsn": dsn})

    repo = Repository(engine, logger)
    try:
        repo.auto_migrate()
    except Exception as exc:
        logger.error("failed to migrate database", extra={"error": str(exc)})
        return 1

    rabbitmq_url = cfg.urls["rabbitmq"]
    try:
        connections = retrier.multi_connects(
            2,
            lambda: pika.BlockingConnection(pika.URLParameters(rabbitmq_url)),
            retrier.RetryOptions(count=3, interval=5),
        )
    except Exception as exc:
        logger.error(
            "error connect to rabbitmq", extra={"url": rabbitmq_url, "error": str(exc)}
        )
        return 1

    try:
        publisher = AmqpPublisher(cfg, logger, connections[0])
    except Exception as exc:
        logger.error("error initialize publisher", extra={"error": str(exc)})
        return 1

    try:
        consumer = Consumer(cfg, logger, connections[1])
    except Exception as exc:
        logger.error("error initialize consumer", extra={"error": str(exc)})
        return 1

    try:
        redis_client = retrier.connect(3, 5, lambda: _open_redis(cfg.urls["redis"]))
    except Exception as exc:
        logger.error("error connect to redis", extra={"error": str(exc)})
        return 1

    cacher = RedisCacher(redis_client, logger)
    core = Service(cacher, publisher, repo, timeout=SERVICE_TIMEOUT)
    events: queue.Queue = queue.Queue(maxsize=EVENT_QUEUE_SIZE)
    listener = Listener(logger, core, events)

    logger.info("service ready to start!")

    healther = HealthChecker(publisher, cacher)

    listener_stop = threading.Event()
    _start(listener.run, listener_stop)
    _start(consumer.consume_messages, events)
    _start(healther.run_server, HEALTH_ADDR)

    while not stop.wait(0.5):
        pass

    listener_stop.set()
    Shutdown(publisher, cacher, consumer).shutdown_all()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the answer service until SIGINT or SIGTERM; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="answer-service",
        description="Store, cache and announce form answers received over the broker.",
    )
    parser.parse_args(argv)

    stop = threading.Event()
    previous = _install_signal_handlers(stop)
    try:
        log.init(
            log.LoggerConfig(
                log_file="app.log",
                log_level="debug",
                app_name="answer-service",
                add_caller=True,
            )
        )
        try:
            return _serve(stop)
        finally:
            log.sync()
    finally:
        _restore_signal_handlers(previous)


if __name__ == "__main__":
    raise SystemExit(main())