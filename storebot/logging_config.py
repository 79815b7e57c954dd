"""JSON logs for the store assistant.

Every record is one JSON object on stdout. Records emitted while a
debounced turn is processed carry that turn's buffer key, tenant and
conversation under "context".
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER_NAME = "storebot"

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
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
    """Route all logging to stdout as JSON at the given level."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class TurnLogger(logging.LoggerAdapter):
    """Adds the turn's identifiers to every record.

    A call may pass context={...} to add fields for that record only.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra_context = kwargs.pop("context", None) or {}
        kwargs["extra"] = {"context": {**self.extra, **extra_context}}
        return msg, kwargs


def get_turn_logger(name: str, **context: Any) -> TurnLogger:
    return TurnLogger(get_logger(name), {k: str(v) for k, v in context.items() if v is not None})
