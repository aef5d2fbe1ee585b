"""Answer use cases: store, cache and announce answers."""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from . import retrier
from .entities import Answer

DEFAULT_RETRIER_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5.0
ANSWER_KEY_TEMPLATE = "answer:{}"

ANSWER_CREATED_EVENT_TYPE = "answer.created"
ANSWER_DELETED_EVENT_TYPE = "answer.deleted"


class AnswerRepository(Protocol):
    def create_answer(self, answer: Answer) -> None: ...

    def delete_answer(self, answer_id: uuid.UUID) -> None: ...


class Publisher(Protocol):
    def publish(self, payload: Any, routing_key: str) -> None: ...


class Cacher(Protocol):
    def do_caching(self, key: str, payload: Any) -> None: ...

    def delete_from_cache(self, key: str) -> None: ...


class ServiceError(Exception):
    """Raised when an answer operation fails."""


class AnswerNilError(ServiceError, ValueError):
    """Raised when no answer was given."""


class InvalidIDError(ServiceError, ValueError):
    """Raised when an answer ID is not a valid UUID."""


@dataclass
class DeletePayload:
    """Body of the answer-deleted event."""

    id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id}


class Service:
    """Coordinates the repository, the cache and the event publisher."""

    def __init__(
        self,
        cacher: Cacher,
        publisher: Publisher,
        repository: AnswerRepository,
        timeout: float = 10.0,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._cacher = cacher
        self._publisher = publisher
        self._repository = repository
        self.timeout = timeout
        self.retry_delay = retry_delay

    def add(self, answer: Answer | None) -> None:
        """Store an answer, then cache and publish it concurrently."""
        if answer is None:
            raise AnswerNilError("answer cannot be nil")
        try:
            self._repository.create_answer(answer)
        except Exception as exc:
            raise ServiceError(f"failed to create answer: {exc}") from exc

        self._run_concurrently(
            self._cache_operation(answer),
            self._publish_operation(answer, ANSWER_CREATED_EVENT_TYPE),
        )

    def delete(self, answer_id: str) -> None:
        """Delete an answer, then drop it from the cache and publish the deletion."""
        try:
            uid = uuid.UUID(answer_id)
        except (ValueError, TypeError, AttributeError) as exc:
            raise InvalidIDError(f"invalid answer ID format: {answer_id}") from exc

        try:
            self._repository.delete_answer(uid)
        except Exception as exc:
            raise ServiceError(f"failed to delete answer: {exc}") from exc

        self._run_concurrently(
            self._cache_delete_operation(answer_id),
            self._publish_operation(
                DeletePayload(id=answer_id), ANSWER_DELETED_EVENT_TYPE
            ),
        )

    def _run_concurrently(self, *operations: Callable[[], None]) -> None:
        """Run operations in parallel; raise on the first one that fails."""
        executor = ThreadPoolExecutor(max_workers=len(operations))
        try:
            futures = [executor.submit(operation) for operation in operations]
            for future in as_completed(futures):
                exc = future.exception()
                if exc is not None:
                    raise ServiceError(
                        f"failed to complete async operations: {exc}"
                    ) from exc
        finally:
            executor.shutdown(wait=False)

    def _deadline_guard(self, deadline: float) -> None:
        if time.monotonic() >= deadline:
            raise TimeoutError("context deadline exceeded")

    def _cache_operation(self, answer: Answer) -> Callable[[], None]:
        def operation() -> None:
            deadline = time.monotonic() + self.timeout
            key = ANSWER_KEY_TEMPLATE.format(answer.id)

            def attempt() -> None:
                self._deadline_guard(deadline)
                self._cacher.do_caching(key, answer)

            retrier.do(DEFAULT_RETRIER_ATTEMPTS, self.retry_delay, attempt)

        return operation

    def _cache_delete_operation(self, answer_id: str) -> Callable[[], None]:
        def operation() -> None:
            deadline = time.monotonic() + self.timeout
            key = ANSWER_KEY_TEMPLATE.format(answer_id)

            def attempt() -> None:
                self._deadline_guard(deadline)
                self._cacher.delete_from_cache(key)

            retrier.do(DEFAULT_RETRIER_ATTEMPTS, self.retry_delay, attempt)

        return operation

    def _publish_operation(self, payload: Any, event_type: str) -> Callable[[], None]:
        def operation() -> None:
            retrier.do(
                DEFAULT_RETRIER_ATTEMPTS,
                self.retry_delay,
                lambda: self._publisher.publish(payload, event_type),
            )

        return operation