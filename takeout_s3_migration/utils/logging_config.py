"""
Logging configuration utilities with structured logging and log rotation.
"""
import json
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, Optional

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_level_lock = threading.Lock()


def setup_logging(
    log_file: Optional[str] = None,
    level: str = "INFO",
    enable_json: bool = False,
    enable_rotation: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    separate_error_log: bool = True
) -> logging.Logger:
    """
    Set up logging with rotation and optional structured output.

    Called once at startup; afterwards the level is only changed through
    set_log_level().

    Args:
        log_file: Path to log file (None = console only)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: If True, use JSON format for structured logging
        enable_rotation: If True, enable log rotation
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
        separate_error_log: If True, create separate error log file

    Returns:
        The application logger handle to pass to the orchestrator

    Raises:
        ValueError: If ``level`` is not a known logging level
    """
    log_level = _parse_level(level)
    root_logger = logging.getLogger()
    root_logger.handlers = []

    if enable_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        if enable_rotation:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
        else:
            file_handler = logging.FileHandler(log_file, encoding='utf-8')

        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        if separate_error_log:
            error_log_file = log_path.parent / f"{log_path.stem}_error{log_path.suffix}"
            error_handler = logging.handlers.RotatingFileHandler(
                str(error_log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            root_logger.addHandler(error_handler)

    set_log_level(level)

    # botocore is chatty at DEBUG
    logging.getLogger('botocore').setLevel(max(log_level, logging.INFO))
    logging.getLogger('urllib3').setLevel(max(log_level, logging.INFO))

    return logging.getLogger('takeout_s3_migration')


def _parse_level(level: str) -> int:
    if level.upper() not in VALID_LEVELS:
        raise ValueError(f"Invalid logging level: {level}. Must be one of {VALID_LEVELS}")
    return getattr(logging, level.upper())


def set_log_level(level: str) -> None:
    """Change the level of the root logger and its non-error handlers."""
    log_level = _parse_level(level)
    with _level_lock:
        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        for handler in root_logger.handlers:
            if handler.level != logging.ERROR:
                handler.setLevel(log_level)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj: Dict[str, Any] = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)

        for key in ('archive', 'path'):
            if hasattr(record, key):
                log_obj[key] = getattr(record, key)

        return json.dumps(log_obj)
