"""Process-wide structured logging to the console and an optional JSON file."""

from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}
_COLORS = {
    logging.DEBUG: 35,
    logging.INFO: 34,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 31,
}

_lock = threading.Lock()
_initialized = False
_logger: logging.LoggerAdapter | None = None
_fallback: logging.LoggerAdapter | None = None


@dataclass
class LoggerConfig:
    """Where and how to log."""

    log_file: str = ""
    log_level: str = ""
    app_name: str = ""
    add_caller: bool = False


class _FieldAdapter(logging.LoggerAdapter):
    """Merges bound fields with the ``extra`` fields of each call."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        fields = dict(self.extra or {})
        fields.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"fields": fields}
        return msg, kwargs


def _timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created).astimezone()
    offset = moment.utcoffset()
    zone = "Z" if not offset else moment.strftime("%z")
    return (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
        f".{moment.microsecond // 1000:03d}{zone}"
    )


def _caller(record: logging.LogRecord) -> str:
    path = Path(record.pathname)
    return f"{path.parent.name}/{path.name}:{record.lineno}"


def _level_name(record: logging.LogRecord) -> str:
    return _LEVEL_NAMES.get(record.levelno, record.levelname.lower())


class _JsonFormatter(logging.Formatter):
    def __init__(self, add_caller: bool) -> None:
        super().__init__()
        self.add_caller = add_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "severity": _level_name(record),
            "timestamp": _timestamp(record.created),
        }
        if self.add_caller:
            entry["caller"] = _caller(record)
        entry["msg"] = record.getMessage()
        entry.update(getattr(record, "fields", {}))
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    def __init__(self, add_caller: bool) -> None:
        super().__init__()
        self.add_caller = add_caller

    def format(self, record: logging.LogRecord) -> str:
        color = _COLORS.get(record.levelno, 0)
        level = f"\x1b[{color}m{_level_name(record).upper()}\x1b[0m"
        parts = [_timestamp(record.created), level]
        if self.add_caller:
            parts.append(_caller(record))
        parts.append(record.getMessage())
        fields = getattr(record, "fields", {})
        if fields:
            parts.append(json.dumps(fields, default=str))
        text = "\t".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def parse_log_level(level: str) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    return _LEVELS.get(level, logging.INFO)


def _new_logger(cfg: LoggerConfig) -> logging.LoggerAdapter:
    level = parse_log_level(cfg.log_level)
    new_handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_ConsoleFormatter(cfg.add_caller))
    new_handlers.append(console)

    if cfg.log_file:
        file_handler = logging.FileHandler(cfg.log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(_JsonFormatter(cfg.add_caller))
        new_handlers.append(file_handler)

    base = logging.getLogger(f"answer_service.app.{cfg.app_name or 'default'}")
    for handler in list(base.handlers):
        base.removeHandler(handler)
        handler.close()
    for handler in new_handlers:
        handler.setLevel(level)
        base.addHandler(handler)
    base.setLevel(level)
    base.propagate = False
    return _FieldAdapter(base, {"service": cfg.app_name})


def init(cfg: LoggerConfig) -> None:
    """Set up the process logger; only the first call has any effect.

    Raises OSError if the log file cannot be opened.
    """
    global _initialized, _logger
    with _lock:
        if _initialized:
            return
        _initialized = True
        _logger = _new_logger(cfg)


def get() -> logging.LoggerAdapter:
    """Return the process logger, or a debug console logger if none was set up."""
    global _fallback
    if _logger is not None:
        return _logger
    with _lock:
        if _fallback is None:
            base = logging.getLogger("answer_service.fallback")
            if not base.handlers:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(_ConsoleFormatter(True))
                base.addHandler(handler)
            base.setLevel(logging.DEBUG)
            base.propagate = False
            _fallback = _FieldAdapter(base, {})
        return _fallback


def sync() -> None:
    """Flush every handler of the process logger."""
    if _logger is not None:
        for handler in _logger.logger.handlers:
            handler.flush()