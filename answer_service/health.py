"""HTTP health-check endpoint reporting the state of the service's dependencies."""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol

from . import logger as log


class Healther(Protocol):
    def is_healthy(self) -> bool: ...


class _HealthServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], checker: HealthChecker) -> None:
        self.checker = checker
        super().__init__(address, _HealthHandler)


class _HealthHandler(BaseHTTPRequestHandler):
    server: _HealthServer

    def _respond(self) -> None:
        if self.path.split("?", 1)[0] != "/health":
            self.send_error(404)
            return
        body = self.server.checker.status().encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = _respond

    def log_message(self, format: str, *args: Any) -> None:
        self.server.checker._logger.debug(format % args)


def _split_address(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    return host.strip("[]"), int(port)


class HealthChecker:
    """Serves /health, answering OK only when every dependency is healthy."""

    def __init__(self, *healthers: Healther) -> None:
        self._healthers = list(healthers)
        self._logger = log.get()
        self._lock = threading.Lock()
        self._server: _HealthServer | None = None
        self.address: tuple[str, int] | None = None

    def status(self) -> str:
        """Ask every dependency and return "OK" or "UNHEALTHY"."""
        results = [healther.is_healthy() for healther in self._healthers]
        return "OK" if all(results) else "UNHEALTHY"

    def run_server(self, addr: str) -> None:
        """Serve the health endpoint on ``addr`` ("host:port") until closed."""
        try:
            server = _HealthServer(_split_address(addr), self)
        except (OSError, ValueError) as exc:
            self._logger.error(
                "error run health server", extra={"addr": addr, "error": str(exc)}
            )
            return
        with self._lock:
            self._server = server
            self.address = server.server_address[:2]
        try:
            server.serve_forever()
        finally:
            server.server_close()
            with self._lock:
                if self._server is server:
                    self._server = None
                    self.address = None

    def close(self) -> None:
        """Stop the server if it is running."""
        with self._lock:
            server = self._server
        if server is not None:
            server.shutdown()