# =============================================================================
# muhasel_core/logging/config.py
# Logging Configuration for Muhasel
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(threadName)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP and Supabase client loggers report every request at INFO
NOISY_LOGGERS = ("urllib3", "requests", "httpx", "httpcore", "supabase", "hpack")


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure logging for the offline core.

    Records go to stderr; the thread name is included because sync runs
    and connectivity checks happen on background threads.

    Args:
        level: Level name from settings ("INFO", "DEBUG", ...) or int
        log_file: Optional file that receives the same records
    """
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level.upper() if isinstance(level, str) else level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Logs how long an operation took and whether it failed.

    Usage:
        with LogContext(logger, "Sync run"):
            manager.upload_local_changes()
        # DEBUG: "Sync run started"
        # INFO:  "Sync run completed in 0.42s"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.started: Optional[float] = None

    def __enter__(self):
        self.started = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self.started
        if exc_type is None:
            self.logger.info(f"{self.operation} completed in {elapsed:.2f}s")
        else:
            self.logger.warning(f"{self.operation} failed after {elapsed:.2f}s: {exc_val}")
        return False
