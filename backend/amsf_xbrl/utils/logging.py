"""
Logging Utilities

Structured logging configuration for the AMSF XBRL reporting engine.
Emits JSON logs carrying the submission/organization keys needed to trace
a report from aggregation through validation.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional
from pathlib import Path

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName', 'taskName',
    'processName', 'process', 'getMessage', 'exc_info', 'exc_text', 'stack_info',
])


class JSONFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ReportLogger:
    """Logger for reporting pipeline events with structured fields."""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def log_taxonomy_loaded(self, taxonomy_dir: str, element_count: int, duration_ms: int):
        self.logger.info(
            "Taxonomy loaded",
            extra={
                "taxonomy_dir": taxonomy_dir,
                "element_count": element_count,
                "duration_ms": duration_ms,
                "event": "taxonomy_loaded"
            }
        )

    def log_populate_complete(self, submission_id: int, year: int, created: int,
                              updated: int, skipped: int, duration_ms: int):
        """Log a finished populate pass with per-outcome row counts."""
        self.logger.info(
            "Submission values populated",
            extra={
                "submission_id": submission_id,
                "year": year,
                "created_count": created,
                "updated_count": updated,
                "skipped_count": skipped,
                "duration_ms": duration_ms,
                "event": "populate_complete"
            }
        )

    def log_validation_attempt(self, attempt: int, max_attempts: int, url: str):
        self.logger.debug(
            "Validation attempt",
            extra={
                "attempt": attempt,
                "max_attempts": max_attempts,
                "url": url,
                "event": "validation_attempt"
            }
        )

    def log_validation_complete(self, valid: bool, errors_count: int, warnings_count: int,
                                attempts: int, duration_ms: int):
        """
        Log validation completion.

        Emitted for every result the client returns, including synthetic
        service-error results, so dashboards see one event per call.
        """
        self.logger.info(
            "Validation completed",
            extra={
                "valid": valid,
                "errors_count": errors_count,
                "warnings_count": warnings_count,
                "attempts": attempts,
                "duration_ms": duration_ms,
                "event": "validation_complete"
            }
        )


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Set up structured logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_formatter = JSONFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.info("Structured logging configured", extra={"log_level": log_level})
