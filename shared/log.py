#!/usr/bin/env python3
"""
Relay Logging Configuration

Centralized logging setup so the server, the router and the reference client
all print the same way. Development runs get a colored console; production
runs get a plain console and, when RELAY_LOG_FILE is set, a file handler.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Starting relay...")
    logger.warning("Dropped frame", extra={"identity": "alice", "msg_type": "message"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class ContextFormatter(logging.Formatter):
    """Prefixes the message with relay context passed through ``extra``."""

    CONTEXT_FIELDS = (
        ("identity", "user"),
        ("msg_type", "msg"),
        ("connection_id", "conn"),
    )

    def format(self, record: logging.LogRecord) -> str:
        context = []
        for attr, label in self.CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                context.append(f"{label}={value}")

        original = record.msg
        if context:
            record.msg = f"[{' '.join(context)}] {record.msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original


class ColoredContextFormatter(ColoredFormatter, ContextFormatter):
    pass


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))
    logger.handlers.clear()

    _add_console_handler(logger, colored=_is_development())
    log_file = os.getenv('RELAY_LOG_FILE')
    if log_file:
        _add_file_handler(logger, Path(log_file))

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Explicit level, then RELAY_LOG_LEVEL, then the environment default"""

    level = level or os.getenv('RELAY_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    env = os.getenv('RELAY_ENV', '').lower()
    if env in ['prod', 'production']:
        return False
    return env in ['dev', 'development'] or 'pytest' in sys.modules


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stdout)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredContextFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = ContextFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(ContextFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
        return False

    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        return (
            os.getenv("ANSICON") is not None
            or os.getenv("WT_SESSION") is not None
            or os.getenv("TERM_PROGRAM") == "vscode"
        )

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.
    """
    _configure_logger(logging.getLogger(), level)
    if level:
        numeric = _get_log_level(level)
        for name in _loggers_configured:
            logging.getLogger(name).setLevel(numeric)


def log_relay_event(logger: logging.Logger, level: str, message: str,
                    envelope: Optional[Dict[str, Any]] = None,
                    **context: Any) -> None:
    """
    Log a relay event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        envelope: Raw envelope dict; its ``type`` becomes the msg_type context
        **context: Additional context fields (identity, connection_id, ...)

    Example:
        log_relay_event(logger, "info", "Forwarded message",
                        envelope=raw, identity="bob", connection_id=3)
    """
    extra_context: Dict[str, Any] = {}
    if envelope:
        extra_context['msg_type'] = envelope.get('type')
    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
