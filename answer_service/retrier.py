"""Retry helpers for connecting to services and running flaky operations."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    """How many attempts to make and how many seconds to wait between them."""

    count: int = 0
    interval: float = 0.0


def connect(retry: int, sleep: float, connector: Callable[[], T]) -> T | None:
    """Call ``connector`` up to ``retry`` times, pausing ``sleep`` seconds after each failure.

    Returns the first successful result and re-raises the last error when every
    attempt failed. With ``retry`` of zero nothing is attempted and None is returned.
    """
    error: Exception | None = None
    for _ in range(retry):
        try:
            return connector()
        except Exception as exc:
            error = exc
        time.sleep(sleep)
    if error is not None:
        raise error
    return None


def multi_connects(
    count: int,
    conn_func: Callable[[], T],
    retrier_opts: RetryOptions | None = None,
) -> list[T | None]:
    """Open ``count`` connections, failing on the first one that cannot be made."""
    if retrier_opts is None:
        return [conn_func() for _ in range(count)]
    return [
        connect(retrier_opts.count, retrier_opts.interval, conn_func)
        for _ in range(count)
    ]


def do(number: int, duration: float, attempt: Callable[[], object]) -> None:
    """Run ``attempt`` up to ``number`` times, waiting ``duration`` seconds between tries.

    Re-raises the last error if no attempt succeeded.
    """
    error: Exception | None = None
    for remaining in reversed(range(number)):
        try:
            attempt()
            return
        except Exception as exc:
            error = exc
        if remaining:
            time.sleep(duration)
    if error is not None:
        raise error