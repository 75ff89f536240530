"""Logging setup for the ledger cache.

Records may carry structured context through ``extra``: any attribute named
``ctx_<field>`` is emitted under ``context.<field>`` by :class:`JsonFormatter`,
e.g. ``extra={"ctx_kind": "ledger", "ctx_key": 101}``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("LDGC_LOG_LEVEL", "INFO")
_CONTEXT_PREFIX = "ctx_"

# Third-party loggers that are noisy at INFO while streaming from Horizon.
_QUIET_LOGGERS = ("urllib3", "watchdog")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the emitting thread and any context extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        context = {
            key[len(_CONTEXT_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(_CONTEXT_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "ledger_cache") -> logging.Logger:
    """Return a named logger, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger"]
