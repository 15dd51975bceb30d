"""
Logging setup for the engine.

Records emitted while a run executes carry the run id and, inside node
tasks, the node id. The ids live in a ContextVar: each node task starts
with a copy of the scheduler's context, so ids bound inside one task never
leak into its siblings.

Two renderings:
- ``json``: one object per line, for log shippers
- ``human``: coloured single lines, for terminals

Usage:
    configure_logging(level="DEBUG", format="human")

    bind_log_fields(run_id="run_4f2a")
    logger.info("starting")  # -> [INFO    ] [run:run_4f2a] starting
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_log_fields: ContextVar[dict[str, Any] | None] = ContextVar("mosaik_log_fields", default=None)

_COLOR_CODE = re.compile(r"\x1b\[[0-9;]*m")

# Attributes callers may pass through ``extra=``
RECORD_FIELDS = ("node_id", "provider", "model")

# LiteLLM logs every request at INFO
NOISY_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpcore", "httpx")


def strip_ansi_codes(text: str) -> str:
    return _COLOR_CODE.sub("", text)


def bind_log_fields(**fields: Any) -> None:
    """Attach ``fields`` (run_id, node_id, ...) to every record logged from this context."""
    current = _log_fields.get() or {}
    _log_fields.set({**current, **fields})


def log_fields() -> dict[str, Any]:
    return dict(_log_fields.get() or {})


def clear_log_fields() -> None:
    _log_fields.set(None)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = log_fields()
    for key in RECORD_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **_record_fields(record),
        }
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        tags = []
        if "run_id" in fields:
            tags.append(f"run:{str(fields['run_id'])[-8:]}")
        if "node_id" in fields:
            tags.append(f"node:{fields['node_id']}")

        label = f"{record.levelname:<8}"
        if self.use_color:
            label = f"\x1b[{self.LEVEL_COLORS.get(record.levelno, '0')}m{label}\x1b[0m"

        line = f"[{label}] "
        if tags:
            line += f"[{' | '.join(tags)}] "
        line += record.getMessage()
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json" or os.getenv("ENV", "").lower() == "production":
        return "json"
    return "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler. Call once at startup.

    Args:
        level: Root log level name
        format: "json", "human", or "auto" (json when LOG_FORMAT=json or
            ENV=production)
    """
    if _resolve_format(format) == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = ConsoleFormatter(use_color="NO_COLOR" not in os.environ)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    floor = max(logging.WARNING, root.level)
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.handlers.clear()
        noisy.propagate = True
        noisy.setLevel(floor)
