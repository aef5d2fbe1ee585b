"""Redis-backed cache for answers."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis


def _encode(payload: Any) -> Any:
    if isinstance(payload, bool):
        return b"1" if payload else b"0"
    if isinstance(payload, (bytes, bytearray, memoryview, str, int, float)):
        return payload
    to_dict = getattr(payload, "to_dict", None)
    if callable(to_dict):
        return json.dumps(to_dict(), separators=(",", ":"))
    if isinstance(payload, (dict, list)):
        return json.dumps(payload, separators=(",", ":"))
    raise TypeError(f"can't marshal {type(payload).__name__}")


class RedisCacher:
    """Stores, reads and deletes cached values in Redis."""

    def __init__(
        self, client: redis.Redis, logger: logging.Logger | logging.LoggerAdapter
    ) -> None:
        self._client = client
        self._logger = logger

    def close(self) -> None:
        self._client.close()

    def is_healthy(self) -> bool:
        """True when Redis answers a ping."""
        try:
            return bool(self._client.ping())
        except Exception:
            return False

    def delete_from_cache(self, key: str) -> None:
        """Remove ``key``; failures are logged and otherwise ignored."""
        try:
            self._client.delete(key)
        except Exception as exc:
            self._logger.error(
                "error delete from redis", extra={"key": key, "error": str(exc)}
            )

    def do_caching(self, key: str, payload: Any) -> None:
        """Store ``payload`` under ``key`` without expiry.

        Objects with ``to_dict`` and plain dicts or lists are stored as JSON.
        """
        try:
            self._client.set(key, _encode(payload))
        except Exception as exc:
            self._logger.error(
                "failed to cash payload with", extra={"key": key, "error": str(exc)}
            )
            raise

    def get_cache_for(self, key: str) -> bytes:
        """Return the cached bytes for ``key``; raise KeyError if absent."""
        try:
            value = self._client.get(key)
        except Exception as exc:
            self._logger.error("error get cash", extra={"key": key, "error": str(exc)})
            raise
        if value is None:
            self._logger.error("error get cash", extra={"key": key, "error": "redis: nil"})
            raise KeyError(key)
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)