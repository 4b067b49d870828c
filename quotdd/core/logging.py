"""Logging utilities with JSON formatting and peer correlation.

This module centralizes logging configuration, including:
- Context-aware peer propagation via contextvars
- JSON formatter for machine-friendly logs
- Configurable stderr/file handlers with rotation support
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from quotdd.core.config import LogSettings

_peer_var: ContextVar[str | None] = ContextVar("peer", default=None)

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Logging fields we intentionally exclude from extra payload capture
_EXCLUDED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


def set_peer(peer: str | None) -> None:
    """Store the peer currently being served in a context variable.

    Args:
        peer: Remote host to associate with subsequent logs.
    """

    _peer_var.set(peer)


def get_peer() -> str | None:
    """Fetch the peer currently being served, if any."""

    return _peer_var.get()


def clear_peer() -> None:
    """Clear any stored peer from context."""

    _peer_var.set(None)


def _extra_fields(record: LogRecord) -> dict[str, Any]:
    """Collect the structured ``extra`` fields attached to a record."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _EXCLUDED_ATTRS and not key.startswith("_")
    }


def _default_timestamp() -> str:
    """Generate an ISO-8601 UTC timestamp string."""

    return datetime.now(timezone.utc).isoformat()


class PeerFilter(logging.Filter):
    """Attach peer from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "peer", None) is None:
            peer = get_peer()
            if peer:
                record.peer = peer
        return True


class JsonFormatter(logging.Formatter):
    """Format LogRecord as a single JSON object."""

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        record_data: dict[str, Any] = {
            "timestamp": _default_timestamp(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        peer = getattr(record, "peer", None) or get_peer()
        if peer:
            record_data["peer"] = peer

        record_data.update(_extra_fields(record))

        if record.exc_info:
            record_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(record_data, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Construct the logging handler based on configuration.

    Args:
        log_settings: Resolved logging settings from environment.

    Returns:
        Configured logging handler (stderr or rotating file).
    """

    if log_settings.output == "file":
        file_path = Path(log_settings.file_path or "logs/quotdd.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if log_settings.max_bytes:
            return RotatingFileHandler(
                file_path,
                maxBytes=log_settings.max_bytes,
                backupCount=log_settings.backup_count,
                encoding="utf-8",
            )
        return logging.FileHandler(file_path, encoding="utf-8")

    return logging.StreamHandler(sys.stderr)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Configure the root logger.

    Args:
        log_settings: Optional log settings; defaults are used if omitted.
    """

    cfg = log_settings or LogSettings()

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = _build_handler(cfg)
    handler.addFilter(PeerFilter())

    if cfg.format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(PLAIN_FORMAT)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
