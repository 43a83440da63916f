"""Centralized logging configuration for the Marker Editor application."""

from __future__ import annotations

import contextvars
import logging
import uuid
from logging import Logger
from pathlib import Path
from typing import Iterable, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "marker_editor_request_id",
    default=None,
)


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def bind_request_id(request_id: Optional[str]) -> contextvars.Token[Optional[str]]:
    """Attach *request_id* to every log record emitted from the current context."""

    return _REQUEST_ID_VAR.set(request_id)


def reset_request_id(token: contextvars.Token[Optional[str]]) -> None:
    _REQUEST_ID_VAR.reset(token)


def current_request_id() -> Optional[str]:
    return _REQUEST_ID_VAR.get()


class RequestContextFilter(logging.Filter):
    """Populate ``record.request_id`` so the shared format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = _REQUEST_ID_VAR.get() or "-"
        return True


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger; every handler gets the request context filter."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        if not any(isinstance(existing, RequestContextFilter) for existing in handler.filters):
            handler.addFilter(RequestContextFilter())
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "marker_editor.log"


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "RequestContextFilter",
    "bind_request_id",
    "configure_logging",
    "current_request_id",
    "get_log_file_path",
    "new_correlation_id",
    "reset_request_id",
]
