"""JSON logging configuration for the relay service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

TEXT_PREVIEW_CHARS = 80


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class LoggerAdapter(logging.LoggerAdapter):
    """Carries fixed fields, such as the sender, into every record's context.

    A per-call ``context=`` keyword is merged over the fixed fields.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**(self.extra or {}), **(context or {})}}
        return msg, kwargs


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"relay.{name}")


def sender_logger(logger: logging.Logger, sender: str) -> LoggerAdapter:
    return LoggerAdapter(logger, {"sender": sender})


def preview(text: str | None, limit: int = TEXT_PREVIEW_CHARS) -> str:
    """Shorten message text before it goes into a log line."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
