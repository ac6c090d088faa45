"""Logging setup for the Memory Vista API."""

from __future__ import annotations

import json
import logging
import sys

from memoryvista.settings import get_settings

_LOGGING_INITIALIZED = False

_RESERVED = frozenset(
    (
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    )
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # extra={...} fields end up as record attributes
        for key, value in record.__dict__.items():
            if key in _RESERVED or key in data:
                continue
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = str(value)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def init_logging(level: str | None = None, format: str | None = None) -> None:
    """
    Configure the root logger once per process.

    Environment variables (via Settings):
      - LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
      - LOG_FORMAT: plain|json (default plain)
    """
    global _LOGGING_INITIALIZED
    if _LOGGING_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level or "INFO").upper()
    resolved_format = (format or settings.log_format or "plain").lower()
    log_level = logging.getLevelName(resolved_level)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if resolved_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logging.getLogger("memoryvista.start").info(
        "Initializing logging | level=%s format=%s", resolved_level, resolved_format
    )
    _LOGGING_INITIALIZED = True
