# =============================================================================
# edu_core/logging/config.py
# Logging setup for the offline storage and sync core
# =============================================================================
"""
One stdout handler plus a size-rotated file, normally under the data
directory.

The level comes from the ``level`` argument, else ``EDU_LOG_LEVEL``, else
INFO.
"""

import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_DIR = Path("logs")
LOG_FILENAME = "edu_core.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

LEVEL_ENV_VAR = "EDU_LOG_LEVEL"

# Held at WARNING whatever the root level
NOISY_LOGGERS = ("urllib3", "requests", "streamlit", "asyncio")


def resolve_level(level: Union[int, str, None] = None) -> int:
    """
    Turn a level name or number into a logging level.

    Unknown names fall back to INFO.
    """
    if level is None:
        level = os.getenv(LEVEL_ENV_VAR, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str, None] = None,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Configure application-wide logging. Safe to call again; the previous
    handlers are replaced.

    Args:
        level: Level name or number (default: ``EDU_LOG_LEVEL`` or INFO)
        log_to_file: Also write to a rotating file
        log_filename: File name inside ``log_dir`` (default: edu_core.log)
        log_dir: Directory for the file (default: ./logs)

    Returns:
        Path of the log file, or None when only stdout is used
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    log_path = None

    if log_to_file:
        log_path = Path(log_dir or LOG_DIR) / (log_filename or LOG_FILENAME)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        ))

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("edu_core")
    if log_path:
        logger.info(f"Logging initialized, writing to {log_path}")
    else:
        logger.info("Logging initialized")
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as ``get_logger(__name__)``."""
    return logging.getLogger(name)


class LogContext:
    """
    Times a block and logs its start and outcome.

    Usage:
        with LogContext(logger, "Pulling lessons") as ctx:
            ...
        ctx.elapsed   # seconds, set on exit

    A failing block is logged with its traceback and re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self._started

        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed after {self.elapsed:.2f}s: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
