"""Structured event helpers shared across the application."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("marker_editor.events")

DB_SLOW_WARNING_MS = 450.0

_MAX_TEXT_LENGTH = 200
# Marker id lists can cover a whole show; only the head is worth logging.
_MAX_LISTED_ITEMS = 20


def _clip(text: str) -> Optional[str]:
    trimmed = text.strip()
    if not trimmed:
        return None
    if len(trimmed) <= _MAX_TEXT_LENGTH:
        return trimmed
    return trimmed[:_MAX_TEXT_LENGTH] + "…"


def _clean_mapping(values: Mapping[Any, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, raw_value in values.items():
        if key is None or key == "":
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "":
            continue
        cleaned[str(key)] = value
    return cleaned


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly representation for *value*."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return _clean_mapping(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
        shown = ", ".join(str(item) for item in items[:_MAX_LISTED_ITEMS])
        hidden = len(items) - _MAX_LISTED_ITEMS
        return _clip(f"{shown} (+{hidden} more)" if hidden > 0 else shown)
    return _clip(str(value))


def normalize_context(values: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop empty entries and sanitise the rest."""

    return _clean_mapping(values) if values else {}


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``message`` with its payload flattened into ``key=value`` pairs."""

    base_message = str(message).strip()
    details = normalize_context(payload)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    details_text = ", ".join(f"{key}={value}" for key, value in details.items())
    display_message = f"[{event_type}] {base_message}" if event_type else base_message
    log_message = f"{display_message} ({details_text})" if details_text else display_message
    extra: Dict[str, Any] = {
        "event": base_message,
        "event_type": event_type or "",
        "event_payload": details,
    }
    logger.log(level, log_message, extra=extra)


def emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a database timing event, escalating slow or failed statements."""

    level = logging.DEBUG
    if payload and payload.get("status") == "error":
        level = logging.ERROR
    elif duration_ms is not None and duration_ms >= DB_SLOW_WARNING_MS:
        level = logging.WARNING
    emit_structured_event(
        "DB_QUERY",
        action,
        payload=payload,
        duration_ms=duration_ms,
        level=level,
        logger=logger,
    )


def emit_shift_event(
    state: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a shift state machine transition."""

    emit_structured_event(
        "SHIFT_STATE",
        message or state,
        payload={"state": state, **(payload or {})},
        level=level,
        logger=logger,
    )


__all__ = [
    "DB_SLOW_WARNING_MS",
    "DEFAULT_EVENT_LOGGER",
    "emit_db_event",
    "emit_shift_event",
    "emit_structured_event",
    "normalize_context",
    "sanitize_context_value",
]
