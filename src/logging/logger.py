# src/logging/logger.py — v3
"""Log formatters and setup for the stagegate root logger.

Modules log through ``logging.getLogger(__name__)``; nothing is emitted until
the host calls setup_logging() (or configure_from_settings()). Both formats
carry the current LogContext, so every line of a stage run can be traced back
to its project and execution.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from stagegate.logging.context import get_context

if TYPE_CHECKING:
    from stagegate.config.settings import Settings

ROOT_LOGGER_NAME = "stagegate"


def _created_at(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _exception_text(formatter: logging.Formatter, record: logging.LogRecord) -> str | None:
    if record.exc_info and record.exc_info[1] is not None:
        return formatter.formatException(record.exc_info)
    return None


class JsonFormatter(logging.Formatter):
    """One JSON object per line for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _created_at(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            payload["context"] = context
        # extra={"data": {...}} on the logging call
        data = getattr(record, "data", None)
        if data:
            payload["data"] = data
        exc_text = _exception_text(self, record)
        if exc_text:
            payload["exception"] = exc_text
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Single-line format for terminals.

    ``2026-03-01 09:00:00 [INFO    ] stagegate.pipeline.runner <proj> [stage] (exec-id) — msg``
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        tags = [
            f"<{ctx.project_id}>" if ctx.project_id else "",
            f"[{ctx.stage}]" if ctx.stage else "",
            f"({ctx.execution_id[:8]})" if ctx.execution_id else "",
        ]
        head = " ".join(
            [
                _created_at(record).strftime("%Y-%m-%d %H:%M:%S"),
                f"[{record.levelname:8s}]",
                record.name,
                *(tag for tag in tags if tag),
            ]
        )
        line = f"{head} — {record.getMessage()}"
        exc_text = _exception_text(self, record)
        return f"{line}\n{exc_text}" if exc_text else line


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JsonFormatter,
    "text": TextFormatter,
}


def get_logger(name: str) -> logging.Logger:
    """Logger below the stagegate root; qualified names pass through."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """Attach console (and optionally file) handlers to the stagegate root.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        log_format: "json" or "text".
        log_file: Rotated log file; None logs to stdout only.
        rotation: Size that triggers rotation, e.g. "10MB".
        retention: Number of rotated files kept.

    Raises:
        ValueError: Unknown log_format.
    """
    try:
        formatter = _FORMATTERS[log_format]()
    except KeyError as exc:
        raise ValueError(f"Unknown log format: {log_format!r}") from exc

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Re-init replaces handlers instead of stacking them
    root.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        from stagegate.logging.handlers import create_rotating_handler

        handlers.append(
            create_rotating_handler(log_file, rotation=rotation, retention=retention)
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    return root


def configure_from_settings(settings: Settings) -> logging.Logger:
    """Apply the LOG_* section of Settings."""
    return setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
