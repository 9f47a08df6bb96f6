"""Logging configuration for the network operator.

Every record carries a ``cycle`` attribute naming the reconcile cycle that
emitted it (``cluster#12``), or ``-`` outside a cycle. The tag is held in
a context variable set by cycle_context(), so it is per thread.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(cycle)s] %(message)s"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_current_cycle: ContextVar[str] = ContextVar("reconcile_cycle", default="-")


class CycleFilter(logging.Filter):
    """Stamp records with the reconcile cycle they were emitted in."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle = _current_cycle.get()
        return True


@contextmanager
def cycle_context(key: str, number: int) -> Iterator[str]:
    """Tag log records emitted inside the block with key and cycle number."""
    token = _current_cycle.set(f"{key}#{number}")
    try:
        yield _current_cycle.get()
    finally:
        _current_cycle.reset(token)


def setup_logging(level: str = "INFO", log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        verbose: If True, set level to DEBUG

    Raises:
        ValueError: If level is not a known level name
    """
    if verbose:
        level = "DEBUG"
    if level.upper() not in LEVEL_NAMES:
        raise ValueError(f"Unknown log level {level!r}, expected one of {', '.join(LEVEL_NAMES)}")

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    cycle_filter = CycleFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    # Console handler (only for WARNING and above by default)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING if not verbose else logging.DEBUG)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(cycle_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(cycle_filter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            logging.warning(f"Failed to create log file handler: {e}")

    # The API client logs every request body at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
