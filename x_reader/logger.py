"""
Logging configuration for x_reader.

Standard output carries the JSON envelope, so every log line goes to stderr
(and optionally to a file).
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "x_reader"


def setup_logger(
    name: str = ROOT_LOGGER,
    log_file: Optional[str] = None,
    level: int = logging.INFO
) -> logging.Logger:
    """
    Set up and return a configured logger.

    Args:
        name: Logger name
        log_file: Optional log file path
        level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Reconfiguring replaces the previous handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

    if log_file:
        log_file_path = Path(log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
        logger.debug(f"Logging to file: {log_file_path}")

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the x_reader tree, e.g. get_logger("session")."""
    if not name or name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class InvocationStats:
    """Track and report what one invocation did."""

    def __init__(self, command: str = ""):
        self.command = command
        self.navigations = 0
        self.candidate_failures = 0
        self.records_emitted = 0
        self.rows_dropped = 0
        self.start_time = None
        self.end_time = None

    def start(self):
        self.start_time = time.monotonic()

    def end(self):
        self.end_time = time.monotonic()

    def add_navigation(self, attempted: int, failed: int):
        """Record the candidates tried by one navigation."""
        self.navigations += attempted
        self.candidate_failures += failed

    def add_records(self, emitted: int, dropped: int = 0):
        self.records_emitted += emitted
        self.rows_dropped += dropped

    def get_summary(self) -> dict:
        duration = None
        if self.start_time is not None and self.end_time is not None:
            duration = self.end_time - self.start_time

        return {
            "command": self.command,
            "navigations": self.navigations,
            "candidate_failures": self.candidate_failures,
            "records_emitted": self.records_emitted,
            "rows_dropped": self.rows_dropped,
            "duration_seconds": duration,
        }

    def log_summary(self, logger: logging.Logger):
        summary = self.get_summary()
        duration = summary["duration_seconds"]
        logger.info(
            f"{summary['command'] or 'invocation'}: "
            f"{summary['records_emitted']} records, "
            f"{summary['rows_dropped']} dropped, "
            f"{summary['navigations']} page loads "
            f"({summary['candidate_failures']} failed)"
            + (f" in {duration:.1f}s" if duration is not None else "")
        )
