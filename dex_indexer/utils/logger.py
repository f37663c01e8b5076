"""Logging setup shared by the indexer modules.

Every module logger writes INFO and above to stdout and everything down to
DEBUG to ``dex_indexer.log`` in the log directory. The returned adapter also
keeps simple sync metrics for end-of-run summaries.

The log directory comes from ``DEX_INDEXER_LOG_DIR``. All loggers share one
file handler, so ``configure_log_dir`` can move the file after a ``.env`` file
has been loaded.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

DEFAULT_LOGS_DIR = Path(__file__).parent.parent.parent / "logs"
LOG_FILE_NAME = "dex_indexer.log"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(funcName)s:%(lineno)d %(message)s"

_file_handler: logging.FileHandler | None = None


def log_dir() -> Path:
    """Return the log directory currently set in the environment."""
    return Path(os.getenv("DEX_INDEXER_LOG_DIR", str(DEFAULT_LOGS_DIR)))


def _shared_file_handler() -> logging.FileHandler:
    global _file_handler
    if _file_handler is None:
        directory = log_dir()
        directory.mkdir(parents=True, exist_ok=True)
        _file_handler = logging.FileHandler(
            directory / LOG_FILE_NAME,
            encoding="utf-8",
            delay=True,
        )
        _file_handler.setLevel(logging.DEBUG)
        _file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return _file_handler


def configure_log_dir() -> Path:
    """
    Point the log file at the directory set in the environment.

    Loggers are created at import time, before the CLI loads ``.env``, so the
    CLI calls this once the environment is complete.

    Returns:
        Path of the log file now in use
    """
    handler = _shared_file_handler()
    directory = log_dir()
    log_file = os.path.abspath(directory / LOG_FILE_NAME)
    if handler.baseFilename != log_file:
        directory.mkdir(parents=True, exist_ok=True)
        handler.acquire()
        try:
            if handler.stream is not None:
                handler.stream.close()
                handler.stream = None
            handler.baseFilename = log_file
        finally:
            handler.release()
    return Path(log_file)


def _attach_handlers(logger: logging.Logger) -> None:
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console)
    logger.addHandler(_shared_file_handler())


class IndexerLogger(logging.LoggerAdapter):
    """Module logger with sync progress and metric helpers."""

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})
        self.metrics: dict[str, float] = {}

    def record_metric(self, name: str, value: float) -> None:
        """
        Remember a metric for log_summary.

        Args:
            name: Metric name (e.g., "blocks_per_second")
            value: Metric value
        """
        self.metrics[name] = value
        self.debug(f"Metric {name}: {value:.2f}")

    def log_progress(self, current: int, start: int, end: int, item_name: str = "blocks") -> None:
        """
        Log how far an inclusive range has been processed.

        Args:
            current: Last processed position
            start: First position of the range
            end: Last position of the range
            item_name: Unit shown in the message
        """
        total = end - start + 1
        done = current - start + 1
        percentage = done / total * 100 if total > 0 else 100.0
        self.info(f"Progress: {done}/{total} {item_name} ({percentage:.1f}%)")

    def log_summary(self) -> None:
        """Log all recorded metrics."""
        if not self.metrics:
            return

        self.info("=== Performance Summary ===")
        for name, value in self.metrics.items():
            self.info(f"{name}: {value:.2f}")
        self.info("===========================")


def get_logger(name: str) -> IndexerLogger:
    """
    Get a configured logger for a module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        IndexerLogger wrapping the named stdlib logger
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)
        _attach_handlers(logger)
    return IndexerLogger(logger)
