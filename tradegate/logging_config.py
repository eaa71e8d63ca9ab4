"""
Structured Logging Configuration

Provides:
- Decision IDs that tag every record emitted while a trade intent is decided
- JSON formatting for machine parsing
- Human-readable console formatting
- Optional rotating file output
"""

import contextvars
import json
import logging
import logging.handlers
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import uuid4


decision_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "decision_id", default=None
)
asset_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "asset", default=None
)


class DecisionContext:
    """Context manager that tags log records with the decision in flight."""

    def __init__(self, decision_id: Optional[str] = None, asset: Optional[str] = None):
        self.decision_id = decision_id or uuid4().hex[:12]
        self.asset = asset
        self._tokens = []

    def __enter__(self):
        self._tokens.append((decision_id_var, decision_id_var.set(self.decision_id)))
        if self.asset:
            self._tokens.append((asset_var, asset_var.set(self.asset)))
        return self

    def __exit__(self, *args):
        for var, token in reversed(self._tokens):
            var.reset(token)


def get_decision_id() -> Optional[str]:
    return decision_id_var.get()


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        include_traceback: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        self.include_traceback = include_traceback
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        decision_id = decision_id_var.get()
        asset = asset_var.get()
        if decision_id:
            log_data["decision_id"] = decision_id
        if asset:
            log_data["asset"] = asset

        log_data.update(self.extra_fields)

        if record.exc_info and self.include_traceback:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class StructuredFormatter(logging.Formatter):
    """Human-readable structured formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )

        level = record.levelname
        if self.use_color and sys.stderr.isatty():
            level = f"{self.COLORS.get(level, '')}{level}{self.RESET}"

        parts = [f"[{timestamp}]", f"[{level}]", f"[{record.name}]", record.getMessage()]

        decision_id = decision_id_var.get()
        if decision_id:
            parts.append(f"[decision={decision_id}]")

        if record.exc_info:
            parts.append("\n" + "".join(traceback.format_exception(*record.exc_info)))

        return " ".join(parts)


def setup_logging(
    level: Union[str, int] = logging.INFO,
    json_format: bool = False,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure logging for the application.

    Console output goes to stderr so command output on stdout stays parseable.

    Args:
        level: Logging level name or number
        json_format: Emit JSON lines instead of the console format
        log_file: Optional rotating log file (always JSON)
        max_bytes: Max size of log file before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Configured root logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # aiohttp access chatter is noise at INFO
    logging.getLogger("aiohttp").setLevel(max(level, logging.WARNING))

    return root_logger
