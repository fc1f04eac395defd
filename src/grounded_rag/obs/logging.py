"""Logging setup: JSON lines or plain text on the package logger."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from grounded_rag.config import LoggingConfig

PACKAGE_LOGGER = "grounded_rag"

# Attributes every LogRecord carries; anything else came from `extra=`.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including structured `extra` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Install a single stream handler on the package logger.

    Calling it again replaces the handler instead of adding another one.
    """

    config = config or LoggingConfig()
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_grounded_rag", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._grounded_rag = True  # type: ignore[attr-defined]
    if config.format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, config.level, logging.INFO))
    return logger
