"""AMQP consumer that turns broker messages into events on a local queue."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

import pika

from .config import Config
from .entities import Event

EXCHANGE_TYPE = "direct"
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_RETRY_ATTEMPTS = 3


class ConsumerError(Exception):
    """Raised when the consumer cannot set up, consume or shut down."""


class Consumer:
    """Consumes events from the request queue and hands them to a local queue.

    The consumer reconnects on its own when the broker connection is lost.
    ``close`` shuts the connection and ends ``consume_messages``.
    """

    reconnect_delay: float = DEFAULT_RECONNECT_DELAY

    def __init__(
        self,
        cfg: Config,
        logger: logging.Logger | logging.LoggerAdapter,
        connection: Any,
        connect: Callable[[], Any] | None = None,
    ) -> None:
        if cfg is None or logger is None or connection is None:
            raise ConsumerError(
                "invalid parameters: cfg, logger, and connection cannot be None"
            )
        self._cfg = cfg
        self._logger = logger
        self._connection = connection
        self._connect = connect if connect is not None else self._dial
        self._channel: Any = None
        self._exchanges: dict[str, None] = {}
        self._lock = threading.RLock()
        self._connected = True
        self._reconnecting = False
        self._stopped = threading.Event()

        try:
            self._initialize_channel()
        except Exception as exc:
            raise ConsumerError(f"failed to initialize channel: {exc}") from exc

        try:
            self._declare_exchange(cfg.exchanges.get("request", ""))
        except Exception as exc:
            self._cleanup()
            raise ConsumerError(f"failed to declare exchange: {exc}") from exc

    def _dial(self) -> Any:
        url = self._cfg.urls.get("rabbitmq", "")
        return pika.BlockingConnection(pika.URLParameters(url))

    @property
    def _request_queue(self) -> str:
        return self._cfg.queues.get("request", "")

    def _initialize_channel(self) -> None:
        try:
            self._channel = self._connection.channel()
        except Exception as exc:
            self._logger.error("failed to open channel", extra={"error": str(exc)})
            raise

    def _declare_exchange(self, exchange_name: str) -> None:
        try:
            self._channel.exchange_declare(
                exchange=exchange_name,
                exchange_type=EXCHANGE_TYPE,
                durable=True,
                auto_delete=False,
                internal=False,
            )
        except Exception as exc:
            self._logger.error(
                "failed to declare exchange",
                extra={"exchange": exchange_name, "error": str(exc)},
            )
            raise
        with self._lock:
            self._exchanges[exchange_name] = None

    def subscribe(self, exchange: str, routing_key: str, queue_name: str) -> None:
        """Declare a durable queue and bind it to ``exchange`` with ``routing_key``."""
        with self._lock:
            if not self._connected:
                raise ConsumerError("consumer is not connected")
            try:
                self._channel.queue_declare(
                    queue=queue_name,
                    durable=True,
                    exclusive=False,
                    auto_delete=False,
                )
            except Exception as exc:
                self._logger.error(
                    "failed to declare queue",
                    extra={"queue": queue_name, "error": str(exc)},
                )
                raise ConsumerError(
                    f"failed to declare queue {queue_name}: {exc}"
                ) from exc
            try:
                self._channel.queue_bind(
                    queue=queue_name, exchange=exchange, routing_key=routing_key
                )
            except Exception as exc:
                self._logger.error(
                    "failed to bind queue to exchange",
                    extra={
                        "queue": queue_name,
                        "exchange": exchange,
                        "routing_key": routing_key,
                        "error": str(exc),
                    },
                )
                raise ConsumerError(
                    f"failed to bind queue {queue_name} to exchange {exchange}: {exc}"
                ) from exc
            self._exchanges[exchange] = None

    def close(self) -> None:
        """Close the channel and the connection; raise ConsumerError if either fails."""
        with self._lock:
            self._connected = False
            self._stopped.set()
            errors: list[str] = []
            if self._channel is not None:
                try:
                    self._channel.close()
                except Exception as exc:
                    self._logger.error("error closing channel", extra={"error": str(exc)})
                    errors.append(f"channel close error: {exc}")
            if self._connection is not None:
                try:
                    self._connection.close()
                except Exception as exc:
                    self._logger.error(
                        "error closing connection", extra={"error": str(exc)}
                    )
                    errors.append(f"connection close error: {exc}")
            if errors:
                raise ConsumerError(f"errors during close: {errors}")

    def is_healthy(self) -> bool:
        """True while connected over a connection that is still open."""
        with self._lock:
            return (
                self._connected
                and self._connection is not None
                and not self._connection.is_closed
            )

    def consume_messages(self, output_queue: queue.Queue | None) -> None:
        """Consume until closed, reconnecting after failures.

        Decoded events are put on ``output_queue`` without blocking; events
        that do not fit are dropped.
        """
        if output_queue is None:
            self._logger.error("output channel cannot be nil")
            return

        while not self._stopped.is_set():
            if not self.is_healthy():
                self._logger.warning(
                    "connection is unhealthy, attempting to reconnect..."
                )
                try:
                    self._handle_reconnection()
                except Exception as exc:
                    self._logger.error("failed to reconnect", extra={"error": str(exc)})
                    self._stopped.wait(self.reconnect_delay)
                    continue

            try:
                self._rebind_exchanges()
            except Exception as exc:
                self._logger.error(
                    "failed to rebind exchanges", extra={"error": str(exc)}
                )
                self._stopped.wait(self.reconnect_delay)
                continue

            try:
                self._start_consuming(output_queue)
            except Exception as exc:
                self._logger.error(
                    "consuming stopped with error", extra={"error": str(exc)}
                )
                self._stopped.wait(self.reconnect_delay)

    def _handle_reconnection(self) -> None:
        with self._lock:
            if self._reconnecting:
                raise ConsumerError("reconnection already in progress")
            self._reconnecting = True
            try:
                self._reconnect()
            finally:
                self._reconnecting = False

    def _start_consuming(self, output_queue: queue.Queue) -> None:
        channel = self._channel
        if channel is None:
            raise ConsumerError("consumer has no open channel")
        try:
            deliveries = channel.consume(queue=self._request_queue, auto_ack=True)
        except Exception as exc:
            raise ConsumerError(f"failed to register consumer: {exc}") from exc

        self._logger.info("successfully connected to RabbitMQ, waiting for messages...")

        for _method, _properties, body in deliveries:
            try:
                self._process_message(body, output_queue)
            except ConsumerError as exc:
                self._logger.error(
                    "failed to process message", extra={"error": str(exc)}
                )
            if self._stopped.is_set():
                return

        if self._stopped.is_set():
            return
        raise ConsumerError("message channel closed")

    def _process_message(self, body: bytes, output_queue: queue.Queue) -> None:
        try:
            event = Event.from_json(body)
        except (ValueError, TypeError) as exc:
            self._logger.error(
                "failed to unmarshal event",
                extra={"error": str(exc), "body": repr(body)},
            )
            raise ConsumerError(f"failed to unmarshal message: {exc}") from exc

        self._logger.debug(
            "received new event",
            extra={
                "event_id": event.id,
                "routing_key": event.type,
                "timestamp": str(event.timestamp),
            },
        )

        try:
            output_queue.put_nowait(event)
        except queue.Full:
            self._logger.warning(
                "output channel is full, dropping message",
                extra={"event_id": event.id},
            )
            raise ConsumerError("output channel is full") from None

    def _rebind_exchanges(self) -> None:
        with self._lock:
            exchanges = list(self._exchanges)
        for exchange in exchanges:
            try:
                self._channel.queue_bind(
                    queue=self._request_queue,
                    exchange=exchange,
                    routing_key=EXCHANGE_TYPE,
                )
            except Exception as exc:
                self._logger.error(
                    "failed to bind queue to exchange",
                    extra={"exchange": exchange, "error": str(exc)},
                )
                raise ConsumerError(f"failed to bind exchange {exchange}: {exc}") from exc

    def _reconnect(self) -> None:
        self._cleanup()
        try:
            self._connection = self._connect()
        except Exception as exc:
            raise ConsumerError(f"failed to dial RabbitMQ: {exc}") from exc

        try:
            self._initialize_channel()
        except Exception:
            try:
                self._connection.close()
            except Exception:
                pass
            raise

        with self._lock:
            exchanges = list(self._exchanges)
        for exchange in exchanges:
            try:
                self._declare_exchange(exchange)
            except Exception as exc:
                self._cleanup()
                raise ConsumerError(
                    f"failed to redeclare exchange {exchange}: {exc}"
                ) from exc

        self._connected = True
        self._logger.info("successfully reconnected to RabbitMQ")

    def _cleanup(self) -> None:
        self._connected = False
        if self._channel is not None:
            try:
                self._channel.close()
            except Exception:
                pass
            self._channel = None
        if self._connection is not None:
            try:
                self._connection.close()
            except Exception:
                pass
            self._connection = None