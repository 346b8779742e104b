"""
Logger Utility
==============

Context-aware console logging for the bot.

Each component creates its own logger with a short context name, and
per-conversation or per-run work derives child loggers so interleaved
output from concurrent runs stays readable:

    [2026-10-18T10:30:00] [INFO] [ResponseHandler:C123:1729.0001] Run created

The minimum level comes from LOG_LEVEL (DEBUG, INFO, WARNING, ERROR).

Usage:
    from writebot.utils.logger import Logger

    logger = Logger("Agent")
    logger.info("Agent ready", {"channel": "C123"})

    run_logger = logger.child("C123")
    run_logger.error("Run failed", exc)
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Log levels, higher is more severe."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVELS = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}


def _get_log_level_from_env() -> LogLevel:
    return _LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper(), LogLevel.INFO)


class Logger:
    """
    A logger bound to a context string.

    Example:
        logger = Logger("Registry")
        logger.info("Agent started", {"channel": "C123"})

        child = logger.child("C123")   # logs as [Registry:C123]
        child.warning("Agent idle")
    """

    def __init__(self, context: str = ""):
        self.context = context
        self._min_level = _get_log_level_from_env()

    def child(self, child_context: str) -> "Logger":
        """Create a logger whose context is nested under this one."""
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context)

    def _format_message(self, level: str, message: str, color: str) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if level < self._min_level:
            return

        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        print(self._format_message(level_name, message, color), file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str)
            print(f"{Colors.DIM}{data_str}{Colors.RESET}", file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(
        self,
        message: str,
        error: BaseException | None = None,
        data: dict[str, Any] | None = None
    ) -> None:
        """
        Log an error message.

        Errors are always shown. When an exception is given its type and
        message are attached to the structured data.

        Args:
            message: The error message
            error: Optional exception to include details from
            data: Optional extra structured data
        """
        details = dict(data) if data else {}
        if error is not None:
            details["error_type"] = type(error).__name__
            details["error_message"] = str(error)
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, details or None)


logger = Logger("WriteBot")
