"""
prioritizer/logging_config.py
Structured logging setup.

Logs are emitted as JSON lines so loop traces can be aggregated per session.
"""

import json
import logging
from logging import LogRecord
from pathlib import Path
from typing import Any, Optional

_CONTEXT_FIELDS = (
    "session_id",
    "user_id",
    "outcome_id",
    "iteration",
    "attempt",
    "stage",
    "status",
    "confidence",
    "duration_ms",
    "converged",
    "evaluation_triggered",
    "target_ms",
    "task_count",
    "included",
    "excluded",
    "scores",
    "reason",
    "reported_status",
    "derived_status",
    "call",
    "wait_time",
    "elapsed",
    "timeout",
    "provider",
    "model",
    "tokens",
    "latency_ms",
    "db_path",
    "deleted",
    "retention_days",
    "error",
)


class StructuredFormatter(logging.Formatter):
    """Format logs as JSON for aggregation systems."""

    def format(self, record: LogRecord) -> str:
        """Convert log record to JSON."""
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Initialize structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives all levels
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
