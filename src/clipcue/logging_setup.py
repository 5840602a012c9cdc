"""Logging configuration.

Records carry the timeline and sequence being stepped, taken from
context variables that the timeline sets around each step (log_context).
"""

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(timeline)s | %(sequence)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_TIMELINE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_timeline", default=None)
LOG_SEQUENCE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_sequence", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.timeline = LOG_TIMELINE.get() or "-"
        record.sequence = LOG_SEQUENCE.get() or "-"
        return True


@contextmanager
def log_context(
    timeline: Optional[str] = None,
    sequence: Optional[str] = None,
) -> Iterator[None]:
    tokens = []
    if timeline is not None:
        tokens.append((LOG_TIMELINE, LOG_TIMELINE.set(timeline)))
    if sequence is not None:
        tokens.append((LOG_SEQUENCE, LOG_SEQUENCE.set(sequence)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    enable_console: bool = True,
    force: bool = False,
) -> logging.Logger:
    """Install formatter, context filter and handlers on the clipcue logger.

    Idempotent: later calls are ignored unless force=True, which replaces
    the handlers installed earlier.
    """
    logger = logging.getLogger("clipcue")
    if getattr(logger, "_clipcue_logging_configured", False) and not force:
        return logger

    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: list[logging.Handler] = []
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if enable_console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        logger.addHandler(handler)

    logger.setLevel(level)
    logger._clipcue_logging_configured = True
    return logger
