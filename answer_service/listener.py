"""Dispatches incoming broker events to the answer service."""

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any

from .entities import Answer, Event
from .service import Service

EVENT_TYPE_ANSWER_CREATE = "request.answer.create"
EVENT_TYPE_ANSWER_DELETE = "request.answer.delete"
DEFAULT_EVENT_CHANNEL_SIZE = 100

_POLL_INTERVAL = 0.1


class EventChannelFullError(Exception):
    """Raised when an event does not fit into the listener's queue."""


class Listener:
    """Takes events from a queue and runs the matching answer operation."""

    def __init__(
        self,
        logger: logging.Logger | logging.LoggerAdapter,
        service: Service,
        events: queue.Queue,
    ) -> None:
        self._logger = logger
        self._service = service
        self._events = events

    @classmethod
    def with_channel_size(
        cls,
        logger: logging.Logger | logging.LoggerAdapter,
        service: Service,
        channel_size: int,
    ) -> Listener:
        """Create a listener with its own queue holding at most ``channel_size`` events."""
        return cls(logger, service, queue.Queue(maxsize=channel_size))

    def send_event(self, event: Event) -> None:
        """Queue an event without blocking; raise EventChannelFullError if full."""
        try:
            self._events.put_nowait(event)
        except queue.Full:
            raise EventChannelFullError(
                f"event channel is full, dropping event: {event.id}"
            ) from None

    def run(self, stop_event: threading.Event) -> None:
        """Process queued events until ``stop_event`` is set."""
        self._logger.info("starting event listener")
        try:
            while not stop_event.is_set():
                try:
                    event = self._events.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                try:
                    self._process_event(event)
                finally:
                    self._events.task_done()
            self._logger.info("received shutdown signal, stopping event listener")
        finally:
            self._logger.info("event listener stopped")

    def event_channel_length(self) -> int:
        """Number of events waiting in the queue."""
        return self._events.qsize()

    def event_channel_capacity(self) -> int:
        """Maximum number of events the queue holds (0 means unbounded)."""
        return self._events.maxsize

    def _process_event(self, event: Event) -> None:
        self._logger.debug(
            "processing event",
            extra={"event_id": event.id, "event_type": event.type},
        )
        if event.type == EVENT_TYPE_ANSWER_CREATE:
            self._handle_answer_create(event)
        elif event.type == EVENT_TYPE_ANSWER_DELETE:
            self._handle_answer_delete(event)
        else:
            self._logger.warning(
                "unknown event type received",
                extra={"event_id": event.id, "event_type": event.type},
            )

    def _handle_answer_create(self, event: Event) -> None:
        try:
            decoded: Any = json.loads(event.payload)
            answer = Answer() if decoded is None else Answer.from_dict(decoded)
        except (ValueError, TypeError) as exc:
            self._logger.error(
                "failed to unmarshal answer creation event payload",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "error": str(exc),
                },
            )
            return

        try:
            self._validate_answer(answer)
        except ValueError as exc:
            self._logger.error(
                "invalid answer data in creation event",
                extra={"event_id": event.id, "error": str(exc)},
            )
            return

        try:
            self._service.add(answer)
        except Exception as exc:
            self._logger.error(
                "failed to add answer",
                extra={
                    "event_id": event.id,
                    "answer_id": str(answer.id),
                    "error": str(exc),
                },
            )
            return

        self._logger.info(
            "successfully processed answer creation event",
            extra={"event_id": event.id, "answer_id": str(answer.id)},
        )

    def _handle_answer_delete(self, event: Event) -> None:
        try:
            decoded: Any = json.loads(event.payload)
            answer_id = self._delete_request_id(decoded)
        except (ValueError, TypeError) as exc:
            self._logger.error(
                "failed to unmarshal answer deletion event payload",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "error": str(exc),
                },
            )
            return

        if not answer_id:
            self._logger.error(
                "missing answer ID in deletion event", extra={"event_id": event.id}
            )
            return

        try:
            self._service.delete(answer_id)
        except Exception as exc:
            self._logger.error(
                "failed to delete answer",
                extra={"event_id": event.id, "answer_id": answer_id, "error": str(exc)},
            )
            return

        self._logger.info(
            "successfully processed answer deletion event",
            extra={"event_id": event.id, "answer_id": answer_id},
        )

    @staticmethod
    def _delete_request_id(decoded: Any) -> str:
        if decoded is None:
            return ""
        if not isinstance(decoded, dict):
            raise ValueError("deletion request must be a JSON object")
        answer_id = decoded.get("id")
        if answer_id is None:
            return ""
        if not isinstance(answer_id, str):
            raise ValueError(f"invalid id: {answer_id!r}")
        return answer_id

    @staticmethod
    def _validate_answer(answer: Answer | None) -> None:
        if answer is None:
            raise ValueError("answer is nil")
        if not str(answer.id):
            raise ValueError("answer ID is empty")