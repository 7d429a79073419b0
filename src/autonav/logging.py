"""Logging configuration for autonav.

All modules should use `get_logger(__name__)` to get their logger, and pass
structured fields through `extra=`. Every formatted line is passed through
`sanitize_credentials`, so provider error strings that echo a token back
never reach the log stream in clear.

Per-query fields (navigator name, turn number) are attached with
`LogContext`. Its fields live in a context variable, so two queries running
as separate asyncio tasks never see each other's fields.

Usage:
    from autonav.logging import setup_logging, get_logger, LogContext

    # At application startup
    setup_logging()

    # In each module
    logger = get_logger(__name__)
    logger.info("Plugin registered", extra={"plugin": "slack", "version": "2.0.0"})

    with LogContext(navigator="platform-docs", turn=3):
        logger.info("Calling model")
        # ... | Calling model | navigator=platform-docs | turn=3
"""

import logging
import sys
from contextvars import ContextVar, Token
from typing import Any

from autonav.constants import LOG_DATE_FORMAT, LOG_FORMAT
from autonav.utils import sanitize_credentials

# Attributes every LogRecord has; anything else arrived through `extra=` or LogContext.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}

_context_fields: ContextVar[dict[str, Any]] = ContextVar("autonav_log_fields", default={})
_factory_installed = False


class StructuredFormatter(logging.Formatter):
    """A formatter that appends structured fields and redacts credentials."""

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        fields = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        ]
        if fields:
            base_message = " | ".join([base_message, *fields])

        return sanitize_credentials(base_message)


def _install_record_factory() -> None:
    """Wrap the current record factory so records pick up LogContext fields."""
    global _factory_installed
    if _factory_installed:
        return

    base_factory = logging.getLogRecordFactory()

    def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = base_factory(*args, **kwargs)
        for key, value in _context_fields.get().items():
            setattr(record, key, value)
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


def setup_logging(
    level: int = logging.INFO,
    *,
    include_timestamp: bool = True,
) -> None:
    """Configure logging for the application.

    Should be called once at application startup (the CLI does this).

    Args:
        level: The logging level (default: INFO).
        include_timestamp: Whether to include timestamps in output.
    """
    if include_timestamp:
        formatter = StructuredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        formatter = StructuredFormatter("%(levelname)-8s | %(name)s | %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps stdout free for answers
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("autonav").setLevel(level)

    # Reduce noise from third-party libraries
    for name in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)

    _install_record_factory()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module."""
    return logging.getLogger(name)


class LogContext:
    """Context manager that adds fields to every record logged inside it.

    Contexts nest; inner fields override outer ones with the same name. A
    field set here must not also be passed through `extra=`, since logging
    refuses to overwrite record attributes.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: Token[dict[str, Any]] | None = None

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        self._token = _context_fields.set({**_context_fields.get(), **self.fields})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _context_fields.reset(self._token)
            self._token = None
