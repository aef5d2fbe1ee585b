"""Publishes events to the AMQP broker."""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from typing import Any

import pika

from .config import Config
from .entities import new_event


def _to_jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _encode(payload: Any) -> bytes:
    return json.dumps(payload, default=_to_jsonable, separators=(",", ":")).encode(
        "utf-8"
    )


class AmqpPublisher:
    """Wraps payloads in events and publishes them to the output exchange."""

    def __init__(
        self,
        cfg: Config,
        logger: logging.Logger | logging.LoggerAdapter,
        connection: Any,
    ) -> None:
        try:
            channel = connection.channel()
        except Exception as exc:
            logger.error("error opening channel", extra={"error": str(exc)})
            try:
                connection.close()
            except Exception:
                pass
            raise
        self._cfg = cfg
        self._logger = logger
        self._connection = connection
        self._channel = channel
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the channel, logging failures, then close the connection."""
        try:
            self._channel.close()
        except Exception as exc:
            self._logger.error("error closing channel", extra={"error": str(exc)})
        self._connection.close()

    def is_healthy(self) -> bool:
        """True while the broker connection is open."""
        return not self._connection.is_closed

    def publish(self, payload: Any, routing_key: str) -> None:
        """Encode ``payload`` as JSON, wrap it in an event and publish it."""
        try:
            body = _encode(payload)
        except (TypeError, ValueError) as exc:
            self._logger.error(
                "error encode poll for publish", extra={"error": str(exc)}
            )
            raise

        event = new_event(routing_key, body)
        event_json = event.to_json().encode("utf-8")

        properties = pika.BasicProperties(
            content_type="application/json",
            timestamp=int(time.time()),
        )
        try:
            with self._lock:
                self._channel.basic_publish(
                    exchange=self._cfg.exchanges.get("output", ""),
                    routing_key=routing_key,
                    body=event_json,
                    properties=properties,
                    mandatory=False,
                )
        except Exception as exc:
            self._logger.error("error publishing event", extra={"error": str(exc)})
            raise

        self._logger.info("successfully published event", extra={"event_id": event.id})