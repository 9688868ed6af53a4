"""
Logging module for TikTok Live Recorder.
Console output tagged with the TikTok handle, plus an optional rotating log file.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOGGER_NAME = 'tiktok_recorder'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('telethon', 'aiohttp.access', 'asyncio')


class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def _component(record: logging.LogRecord) -> str:
    """'tiktok_recorder.coordinator' -> 'coordinator'"""
    if record.name.startswith(f'{LOGGER_NAME}.'):
        return record.name[len(LOGGER_NAME) + 1:]
    return '' if record.name == LOGGER_NAME else record.name


class ConsoleFormatter(logging.Formatter):
    """Short console lines: time, level, @handle, message. Colored on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.MAGENTA,
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_color else text

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = self._paint(f"{record.levelname:8}", self.LEVEL_COLORS.get(record.levelno, Colors.RESET))

        user = getattr(record, 'user', None)
        user_str = self._paint(f"[@{user}]", Colors.CYAN) + " " if user else ""

        message = f"{self._paint(timestamp, Colors.GRAY)} {level} {user_str}{record.getMessage()}"
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        return message


class FileFormatter(logging.Formatter):
    """Plain pipe-separated lines for the log file, with the emitting component."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        user = getattr(record, 'user', None) or '-'
        component = _component(record) or '-'

        message = (
            f"{timestamp} | {record.levelname:8} | {component:12} | "
            f"{user:24} | {record.getMessage()}"
        )
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        return message


class UserLoggerAdapter(logging.LoggerAdapter):
    """Attaches the TikTok handle to every record."""

    def __init__(self, logger: logging.Logger, user: str):
        super().__init__(logger, {'user': user})

    def process(self, msg, kwargs):
        extra = kwargs.setdefault('extra', {})
        extra['user'] = self.extra['user']
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up the application logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Path to log file. If None, logs only to console.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of rotated files to keep.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.propagate = False

    # Calling twice must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
    logger.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Application logger, or one of its children."""
    return logging.getLogger(f'{LOGGER_NAME}.{name}' if name else LOGGER_NAME)


def get_user_logger(user: Optional[str]) -> logging.LoggerAdapter:
    """
    Logger for messages about one TikTok user.

    Args:
        user: TikTok handle (without @).
    """
    return UserLoggerAdapter(get_logger('recorder'), user or '')
