r"""
Centralized logging configuration for Box Counter.

This module provides the logging setup shared by every module:
- Structured JSON logging to a daily file (easy to grep after a shift)
- Automatic file rotation when a file exceeds MaxLogSizeMB
- Configurable log level from config.ini
- Automatic cleanup of old logs (retention policy)
- Human-readable console output
- Context-aware logging (operator, active day partition)

Log file location: [Logging] LogDir from config.ini, or
                   ~/.box_counter/logs when not configured
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO", "tool": "box_counter",
     "operator": "ana", "day": "2025-11-05", "module": "session_controller",
     "function": "on_label_decoded", "line": 120, "message": "Recorded A100-3"}
"""

import logging
import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar


# Context variables for structured logging
_operator: ContextVar[Optional[str]] = ContextVar('operator', default=None)
_day_key: ContextVar[Optional[str]] = ContextVar('day_key', default=None)


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format
    - level: Log level name
    - tool: Always "box_counter"
    - operator: Current operator context (if set)
    - day: Active day partition (if set)
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'box_counter',
            'operator': _operator.get(),
            'day': _day_key.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first get_logger() call, no matter
    how many modules import it. Settings come from config.ini:
    - LogDir: Directory for the daily log files
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    """

    _initialized: bool = False
    config_path: Path = Path('config.ini')

    @classmethod
    def get_logger(cls, name: str = 'BoxCounter') -> logging.Logger:
        """
        Get or create a logger, initializing logging on first use.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures a JSON file handler (rotating, one file per day) and a
        readable console handler on the root logger, then removes logs
        older than the retention period.
        """
        config = cls._load_config()

        default_dir = Path(os.path.expanduser("~")) / ".box_counter" / "logs"
        log_dir = Path(config.get('Logging', 'LogDir', fallback=str(default_dir)))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_dir = default_dir
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not create log directory. Using local: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('BoxCounter')
        logger.info("=" * 80)
        logger.info("Box Counter Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @classmethod
    def _load_config(cls) -> configparser.ConfigParser:
        """
        Load logging configuration from config.ini.

        Returns an empty ConfigParser when the file does not exist; callers
        then fall back to defaults (INFO level, 10MB, 30 days retention).
        """
        config = configparser.ConfigParser()
        if cls.config_path.exists():
            config.read(cls.config_path, encoding='utf-8')
        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs; 0 or negative keeps all
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('BoxCounter').debug(f"Deleted old log: {log_file.name}")
        except OSError as e:
            # Non-fatal: a log file in use must not stop the application
            logging.getLogger('BoxCounter').warning(f"Failed to cleanup old logs: {e}")


def get_logger(name: str = 'BoxCounter') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting scanner")
    """
    return AppLogger.get_logger(name)


def set_operator_context(operator: Optional[str]) -> None:
    """Set the operator name included in subsequent log entries (None clears it)."""
    _operator.set(operator or None)


def set_day_context(day_key: Optional[str]) -> None:
    """Set the active day partition (YYYY-MM-DD) included in subsequent log entries."""
    _day_key.set(day_key)


def clear_logging_context() -> None:
    """Clear operator and day context."""
    _operator.set(None)
    _day_key.set(None)
