"""Orderly shutdown of the service's resources."""

from __future__ import annotations

from typing import Protocol

from . import logger as log


class Closer(Protocol):
    def close(self) -> None: ...


class Shutdown:
    """Closes a fixed set of resources in the order they were given."""

    def __init__(self, *closers: Closer) -> None:
        self._closers = list(closers)
        self._logger = log.get()

    def shutdown_all(self) -> list[Exception]:
        """Close every resource, logging failures; return the errors met."""
        errors: list[Exception] = []
        for closer in self._closers:
            try:
                closer.close()
            except Exception as exc:
                self._logger.error("error close", extra={"error": str(exc)})
                errors.append(exc)
        return errors