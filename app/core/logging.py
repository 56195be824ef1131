"""ADSYNC — Structured JSON Logging.

Every module logs through a child of the ``adsync`` logger. The parent owns
the single stdout handler, so each line is written once even when uvicorn
configures the root logger too.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from app.config import settings

ROOT_LOGGER = "adsync"

# Sync context passed via ``extra=`` and copied onto the JSON line
EXTRA_FIELDS = (
    "project_id",
    "period_key",
    "entity_id",
    "endpoint",
    "attempt",
    "duration_ms",
    "status_code",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}
        )
        return json.dumps(entry, default=str)


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
        root.propagate = False
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """Child logger ``adsync.<name>``; records go through the shared JSON handler."""
    _root_logger()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
