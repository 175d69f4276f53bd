"""Structured logging for commsflow.

Every record goes to stdout as one JSON line. Components log ids through
``extra={"context": {...}}``; a pipeline run binds its communication id once
with :func:`bind_logger` and adds per-project fields as it goes.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Union

SERVICE_NAME = "commsflow"

# Third-party loggers that log every HTTP call at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send everything to stdout as JSON. Safe to call once per app build."""
    root = logging.getLogger()
    level_value = logging.getLevelName(level.upper())
    root.setLevel(level_value if isinstance(level_value, int) else logging.INFO)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class ContextLogger(logging.LoggerAdapter):
    """Adds bound context to each record.

    Per-call context comes from a ``context=`` keyword or from
    ``extra={"context": ...}``; both override bound keys.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        context = {**self.extra, **(extra.pop("context", None) or {}), **(kwargs.pop("context", None) or {})}
        if context:
            extra["context"] = context
        kwargs["extra"] = extra
        return msg, kwargs


def bind_logger(logger: Union[str, logging.Logger], **context: Any) -> ContextLogger:
    if isinstance(logger, str):
        logger = get_logger(logger)
    return ContextLogger(logger, context)
