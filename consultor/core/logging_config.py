# consultor/core/logging_config.py
"""
Process-wide logging for the consultation API.

Records go to stderr and, unless LOG_DIR is set to an empty string, to a
size-rotated file. Calling setup_logging() again only updates the level;
handlers are attached once per destination.
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILE_NAME = 'consultor.log'
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

# Client libraries that log every request at INFO
QUIET_LOGGERS = ("uvicorn.access", "openai", "httpx", "httpcore", "redis")


def _is_console_handler(handler: logging.Handler) -> bool:
    # FileHandler subclasses StreamHandler
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)


def _file_handler_for(root: logging.Logger, path: Path) -> Optional[logging.Handler]:
    target = str(path.resolve())
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == target:
            return handler
    return None


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level name, defaults to LOG_LEVEL or INFO
        log_dir: Directory for the rotating log file, defaults to LOG_DIR or ./logs

    Returns:
        The root logger
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if log_dir is None:
        log_dir = os.getenv("LOG_DIR", "logs")

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not any(_is_console_handler(h) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / LOG_FILE_NAME

        if _file_handler_for(root, log_path) is None:
            rotating = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUPS,
                encoding='utf-8'
            )
            rotating.setFormatter(formatter)
            root.addHandler(rotating)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
