from __future__ import annotations

import json as jsonlib
import logging
import sys
from typing import Any

_EXTRA_FIELD = "gw_extra"


class _ExtraDefaultFilter(logging.Filter):
    """Guarantee every record carries the structured extra field."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, _EXTRA_FIELD):
            setattr(record, _EXTRA_FIELD, "{}")
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with structured fields under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record),
            "name": record.name,
            "message": record.getMessage(),
            "extra": jsonlib.loads(getattr(record, _EXTRA_FIELD, "{}")),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return jsonlib.dumps(payload, default=str)


def configure_logging(json: bool, level: int = logging.INFO) -> None:
    """Configure application-wide logging.

    Args:
        json: Whether to emit JSON-formatted logs.
        level: Root log level.
    """

    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler = logging.StreamHandler(sys.stdout)
    if json:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s %(gw_extra)s",
        )

    handler.setFormatter(formatter)
    handler.addFilter(_ExtraDefaultFilter())
    root.addHandler(handler)


def log_fields(**fields: Any) -> dict[str, str]:
    """Build the ``extra`` mapping for a structured log call."""

    return {_EXTRA_FIELD: jsonlib.dumps(fields, default=str)}


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; pair calls with ``extra=log_fields(...)``."""

    return logging.getLogger(name)
