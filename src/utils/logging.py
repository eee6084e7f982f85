"""Structured logging configuration for vesper.

Uses structlog over stdlib logging, with the running batch id attached
to every event.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Batch and item correlation for every event emitted while a batch runs
current_job_id: ContextVar[str | None] = ContextVar("current_job_id", default=None)
current_item_index: ContextVar[int | None] = ContextVar("current_item_index", default=None)

NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "google_genai",
    "google_genai.models",
    "botocore",
    "boto3",
    "urllib3.connectionpool",
    "aiosqlite",
]


def add_batch_context(_logger, _method_name, event_dict):
    """Attach job_id and item_index when a batch is running."""
    job_id = current_job_id.get()
    if job_id:
        event_dict.setdefault("job_id", job_id)
        item_index = current_item_index.get()
        if item_index is not None:
            event_dict.setdefault("item_index", item_index)
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON logs. If False, use colored console output.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_batch_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records (logging.getLogger(__name__)) get the same rendering
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


def set_job_context(job_id: str):
    """Set the current batch id for log correlation.

    Returns:
        Token that can be passed to clear_job_context() to restore the previous value
    """
    return current_job_id.set(job_id)


def clear_job_context(token=None) -> None:
    """Clear the current batch context, or restore it from a token."""
    if token is not None:
        current_job_id.reset(token)
    else:
        current_job_id.set(None)


def set_item_context(index: int | None):
    """Set the batch item being processed; returns a token for reset_item_context()."""
    return current_item_index.set(index)


def reset_item_context(token) -> None:
    current_item_index.reset(token)
