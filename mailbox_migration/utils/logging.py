"""
Logging setup for the Mailbox Migration Assistant.

This module configures the package logger with a Rich console handler, an
optional rotating log file and optional structured JSON output, and
provides a run-scoped logger that tags records with the run ID and stage.
"""

import json
import logging
import logging.handlers
import sys
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "mailbox_migration"

_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message',
}


@dataclass
class LogEntry:
    """Structured log entry with metadata."""
    timestamp: datetime = field(default_factory=datetime.now)
    level: str = "INFO"
    logger: str = ROOT_LOGGER_NAME
    message: str = ""
    run_id: Optional[str] = None
    stage: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StructuredFormatter(logging.Formatter):
    """Formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            run_id=getattr(record, 'run_id', None),
            stage=getattr(record, 'stage', None),
            metadata={
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
            }
        )

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS and key not in ('run_id', 'stage'):
                entry.metadata[key] = value

        if record.exc_info:
            entry.metadata['exception'] = self.formatException(record.exc_info)

        return entry.to_json()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: bool = True,
    structured_logging: bool = False,
    max_log_size: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
    console: Optional[Console] = None
) -> logging.Logger:
    """
    Set up logging for the Mailbox Migration Assistant.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path (rotated)
        rich_console: Whether to use the Rich console handler
        structured_logging: Whether to emit structured JSON
        max_log_size: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
        console: Rich console to log to (optional)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    plain_formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if rich_console and not structured_logging:
        console_handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(StructuredFormatter() if structured_logging else plain_formatter)

    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(StructuredFormatter() if structured_logging else plain_formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance below the package logger."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class RunLogger:
    """Logger for one migration run; every record carries the run ID and stage."""

    def __init__(self, run_id: str, logger: Optional[logging.Logger] = None):
        self.run_id = run_id
        self.stage: Optional[str] = None
        self.logger = logger or get_logger("run")

    def _extra(self, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = {'run_id': self.run_id, 'stage': self.stage}
        if metadata:
            extra.update(metadata)
        return extra

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra=self._extra(metadata))

    def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra=self._extra(metadata))

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self.logger.error(message, extra=self._extra(metadata))

    def step_start(self, stage: str):
        """Log stage start."""
        self.stage = stage
        self.info(f"Starting stage: {stage}", {'stage_status': 'started'})

    def step_complete(self, stage: str, duration: float):
        """Log stage completion."""
        self.info(
            f"Completed stage: {stage} (took {duration:.2f}s)",
            {'stage_status': 'completed', 'duration': duration}
        )

    def step_skipped(self, stage: str, reason: str):
        self.info(f"Skipping stage: {stage} ({reason})", {'stage_status': 'skipped'})

    def step_failed(self, stage: str, error: str):
        """Log stage failure."""
        self.error(
            f"Failed stage: {stage} - {error}",
            {'stage_status': 'failed', 'error_details': error}
        )
