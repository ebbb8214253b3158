"""
Logging for Episode Processor.

Console output is colored when attached to a terminal, the optional log file
rotates by size. Records logged through a task logger carry the task's path
in the tree (e.g. "AA001 / Generate Cuts / AA001_2 / Encode cut").
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


ROOT_LOGGER = 'episode_processor'
NO_TASK = '-'

RESET = "\033[0m"
GRAY = "\033[90m"
CYAN = "\033[96m"

LEVEL_COLORS = {
    logging.DEBUG: GRAY,
    logging.INFO: "\033[92m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[95m",
}

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(task)s | %(message)s"


class TaskFieldFilter(logging.Filter):
    """Gives records logged outside a task an empty task field."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'task'):
            record.task = NO_TASK
        return True


class ConsoleFormatter(logging.Formatter):
    """Short timestamp, level and task path, colored on terminals."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt='%H:%M:%S')
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{RESET}" if self.use_color else text

    def format(self, record: logging.LogRecord) -> str:
        fields = [
            self._paint(self.formatTime(record, self.datefmt), GRAY),
            self._paint(f"{record.levelname:8}", LEVEL_COLORS.get(record.levelno, RESET)),
        ]

        task = getattr(record, 'task', NO_TASK)
        if task != NO_TASK:
            fields.append(self._paint(f"[{task}]", CYAN))

        fields.append(record.getMessage())
        text = " ".join(fields)

        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class TaskLoggerAdapter(logging.LoggerAdapter):
    """
    Tags records with the path of a task.

    The path is looked up on every call, so renamed tasks and tasks moved
    under a parent after creation are logged with their current position.
    """

    def __init__(self, logger: logging.Logger, task):
        super().__init__(logger, {})
        self.task = task

    def process(self, msg, kwargs):
        kwargs['extra'] = {**(kwargs.get('extra') or {}), 'task': self.task.path}
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Logging level name, unknown names fall back to INFO.
        log_file: Rotating log file, None for console only.
        max_size_mb: Size at which the log file rotates.
        backup_count: Rotated files to keep.

    Returns:
        The application logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        rotating = RotatingFileHandler(
            path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        rotating.addFilter(TaskFieldFilter())
        rotating.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(rotating)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Application logger, or its `name` child."""
    return logging.getLogger(f'{ROOT_LOGGER}.{name}' if name else ROOT_LOGGER)


def get_task_logger(task) -> TaskLoggerAdapter:
    """Logger tagging every record with the task's path."""
    return TaskLoggerAdapter(get_logger('tasks'), task)
