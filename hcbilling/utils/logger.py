"""Structured logging configuration."""
import logging
import os
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    log_dir: str = "logs",
) -> None:
    """
    Configure structured logging for the API and the command line.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
        log_file: Optional log file name (if None, logs to stdout)
        log_dir: Directory for log files (default: "logs")
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Repeated calls (tests, CLI re-entry) must not stack handlers
    root_logger.handlers = []

    handlers = []
    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path / log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=10,
            )
        )
        if os.getenv("ENVIRONMENT", "development") == "development":
            handlers.append(logging.StreamHandler(sys.stdout))
    else:
        handlers.append(logging.StreamHandler(sys.stdout))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """
    Bind values to every log event emitted inside the block.

    Used while processing a single EDI file so that each event carries the
    file name or payment reference without passing them around.

    Example:
        with log_context(filename="remit.835"):
            reader.process()
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str) -> Any:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
