"""
Centralized logging configuration for the web tools.

This module provides structured JSON logging with:
- Rotating file handlers under a configurable log directory
- A separate error log
- Optional stderr output for errors
- Environment-based configuration (WEB_TOOLS_LOG_*)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Fields passed as ``extra={"extra_fields": {...}}`` are merged into the record,
    which is how the fetch pipeline attaches URLs, stages and response ids.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class LoggerConfig:
    """
    One-time root logger setup shared by the CLI host and the test suite.
    """

    LOG_DIR = Path(os.getenv("WEB_TOOLS_LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("WEB_TOOLS_LOG_LEVEL", "INFO").upper()
    LOG_TO_CONSOLE = os.getenv("WEB_TOOLS_LOG_TO_CONSOLE", "false").lower() == "true"
    MAX_BYTES = 5 * 1024 * 1024
    BACKUP_COUNT = 3

    _initialized = False

    @classmethod
    def setup_logging(cls) -> None:
        """
        Attach the JSON file handlers (and optional console handler) to the root logger.
        Safe to call repeatedly; only the first call has an effect.
        """
        if cls._initialized:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, cls.LOG_LEVEL, logging.INFO))

        json_formatter = JsonFormatter()

        try:
            cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
        except OSError:
            # Read-only working directory: fall back to stderr only
            cls.LOG_TO_CONSOLE = True
        else:
            app_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / "app.log",
                maxBytes=cls.MAX_BYTES,
                backupCount=cls.BACKUP_COUNT,
                encoding="utf-8",
            )
            app_handler.setLevel(logging.INFO)
            app_handler.setFormatter(json_formatter)
            root_logger.addHandler(app_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / "error.log",
                maxBytes=cls.MAX_BYTES,
                backupCount=cls.BACKUP_COUNT,
                encoding="utf-8",
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(json_formatter)
            root_logger.addHandler(error_handler)

            if cls.LOG_LEVEL == "DEBUG":
                debug_handler = logging.handlers.RotatingFileHandler(
                    cls.LOG_DIR / "debug.log",
                    maxBytes=cls.MAX_BYTES,
                    backupCount=cls.BACKUP_COUNT,
                    encoding="utf-8",
                )
                debug_handler.setLevel(logging.DEBUG)
                debug_handler.setFormatter(json_formatter)
                root_logger.addHandler(debug_handler)

        if cls.LOG_TO_CONSOLE:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.ERROR)
            console_handler.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(console_handler)

        cls._initialized = True

        logging.getLogger(__name__).info(
            "Logging system initialized",
            extra={
                "extra_fields": {
                    "log_level": cls.LOG_LEVEL,
                    "log_dir": str(cls.LOG_DIR),
                    "console_logging": cls.LOG_TO_CONSOLE,
                }
            },
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup_logging()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Example:
        >>> from utils.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.warning("Fallback failed", extra={"extra_fields": {"url": url}})
    """
    return LoggerConfig.get_logger(name)
