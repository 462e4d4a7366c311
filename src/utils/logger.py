"""
Structured logging configuration.

Every module logs through structlog with keyword context. Long-running work
(a batch, a phase run, a background fetch) binds its identifiers with
``LogContext`` so each line can be traced back to the record it touched.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.types import Processor


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure application-wide structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Render JSON lines instead of the colored console format.
        log_file: Optional file that also receives stdlib log records.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    processors = _shared_processors()

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    # httpx logs every request at INFO, which drowns pipeline events.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger for the given module name."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager binding identifiers to every log line inside the block.

    Example:
        >>> with LogContext(listing_id=listing.id, phase="bullets"):
        ...     logger.info("Phase started")
    """

    def __init__(self, **kwargs):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self._bound = False

    def __enter__(self):
        structlog.contextvars.bind_contextvars(**self.context)
        self._bound = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._bound:
            structlog.contextvars.unbind_contextvars(*self.context.keys())
            self._bound = False


__all__ = ["setup_logging", "get_logger", "LogContext"]
