"""
Structured logging configuration.

Emits both human-readable and JSON logs for debugging.
JSON logs include:
- Timestamp
- Level
- Subsystem (core, telemetry, monitor, analyzer, optimizer)
- Tree ID
- Node ID
- Logical tick
- Event type
- Latency metrics
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional


class StructuredLogRecord(logging.LogRecord):
    """Extended log record with structured fields."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tree_id: Optional[str] = None
        self.node_id: Optional[str] = None
        self.tick: Optional[int] = None
        self.subsystem: str = "general"
        self.event_type: Optional[str] = None
        self.latency_ms: Optional[float] = None
        self.extra_data: Dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add structured fields if present
        if hasattr(record, "subsystem"):
            log_data["subsystem"] = record.subsystem
        if getattr(record, "tree_id", None):
            log_data["tree_id"] = record.tree_id
        if getattr(record, "node_id", None):
            log_data["node_id"] = record.node_id
        if getattr(record, "tick", None) is not None:
            log_data["tick"] = record.tick
        if getattr(record, "event_type", None):
            log_data["event"] = record.event_type
        if getattr(record, "latency_ms", None) is not None:
            log_data["latency_ms"] = record.latency_ms
        if getattr(record, "extra_data", None):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable format with colors."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = record.levelname[:4]

        prefix_parts = [f"{timestamp} {level}"]

        subsystem = getattr(record, "subsystem", "general")
        if subsystem != "general":
            prefix_parts.append(f"[{subsystem}]")
        if getattr(record, "tree_id", None):
            prefix_parts.append(f"tree={record.tree_id}")
        if getattr(record, "node_id", None):
            prefix_parts.append(f"node={record.node_id}")
        if getattr(record, "tick", None) is not None:
            prefix_parts.append(f"t={record.tick}")

        prefix = " ".join(prefix_parts)
        message = record.getMessage()

        if getattr(record, "latency_ms", None) is not None:
            message = f"{message} ({record.latency_ms:.2f}ms)"

        line = f"{prefix}: {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            line = f"{color}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class StructuredLogger(logging.Logger):
    """Logger with structured logging methods."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        super().__init__(name, level)

    def _log_structured(
        self,
        level: int,
        msg: str,
        tree_id: Optional[str] = None,
        node_id: Optional[str] = None,
        tick: Optional[int] = None,
        subsystem: str = "general",
        event_type: Optional[str] = None,
        latency_ms: Optional[float] = None,
        **extra,
    ) -> None:
        """Log with structured data."""
        if not self.isEnabledFor(level):
            return
        record = self.makeRecord(
            self.name, level, "", 0, msg, (), None
        )
        record.tree_id = tree_id
        record.node_id = node_id
        record.tick = tick
        record.subsystem = subsystem
        record.event_type = event_type
        record.latency_ms = latency_ms
        record.extra_data = extra
        self.handle(record)

    def event(
        self,
        event_type: str,
        msg: str,
        **kwargs,
    ) -> None:
        """Log an event."""
        self._log_structured(
            logging.INFO,
            msg,
            event_type=event_type,
            **kwargs,
        )

    def latency(
        self,
        operation: str,
        latency_ms: float,
        **kwargs,
    ) -> None:
        """Log a latency measurement."""
        self._log_structured(
            logging.DEBUG,
            f"{operation} completed",
            latency_ms=latency_ms,
            **kwargs,
        )


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    json_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        json_file: Path for JSON logs (in log_dir if relative)
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep
    """
    logging.setLoggerClass(StructuredLogger)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers = []

    # Console handler (human-readable)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(HumanFormatter())
    root_logger.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        human_path = os.path.join(log_dir, "bt_tuner.log")
        human_handler = RotatingFileHandler(
            human_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        human_handler.setFormatter(HumanFormatter(use_colors=False))
        root_logger.addHandler(human_handler)

        json_path = json_file or os.path.join(log_dir, "bt_tuner.json.log")
        if not os.path.isabs(json_path):
            json_path = os.path.join(log_dir, json_path)

        json_handler = RotatingFileHandler(
            json_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(json_handler)


def log_event(
    logger: logging.Logger,
    event_type: str,
    msg: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Emit a structured event through any logger."""
    if isinstance(logger, StructuredLogger):
        logger._log_structured(level, msg, event_type=event_type, **fields)
    else:
        logger.log(level, msg, extra={"event_type": event_type, **_reserved_safe(fields)})


def _reserved_safe(fields: Dict[str, Any]) -> Dict[str, Any]:
    # LogRecord refuses to overwrite its own attributes via ``extra``
    reserved = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}
    return {k: v for k, v in fields.items() if k not in reserved}
