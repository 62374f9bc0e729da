"""
Logging setup for the jarvis package.

All output goes to stderr so that stdout stays reserved for command results
(agents parse it). Two formats:

  text  ``2026-01-01 12:00:00,000 INFO jarvis.relay.broker: client connected``
  json  one JSON object per line (ts, level, logger, message[, exc])
"""

from __future__ import annotations

import json
import logging
import sys

from jarvis.core.config import LoggingConfig

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class _StderrHandler(logging.StreamHandler):
    """StreamHandler bound to whatever ``sys.stderr`` is at emit time."""

    @property  # type: ignore[override]
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Install a single stderr handler on the ``jarvis`` logger. Idempotent."""
    config = config or LoggingConfig()
    logger = logging.getLogger("jarvis")
    logger.setLevel(config.level)

    for handler in list(logger.handlers):
        if isinstance(handler, _StderrHandler):
            logger.removeHandler(handler)

    handler = _StderrHandler()
    if config.format == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    logger.addHandler(handler)
    return logger
