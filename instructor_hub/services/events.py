"""Structured event helpers shared across the application."""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("instructor_hub.events")
_MAX_VALUE_LENGTH = 200


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly representation for *value*."""

    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        sanitized: Dict[str, Any] = {}
        for key, item in value.items():
            if key is None:
                continue
            cleaned = sanitize_context_value(item)
            if cleaned is None or cleaned == "":
                continue
            sanitized[str(key)] = cleaned
        return sanitized
    if isinstance(value, (list, tuple, set)):
        joined = ", ".join(str(item) for item in value)
    else:
        joined = str(value)
    trimmed = joined.strip()
    if not trimmed:
        return None
    return trimmed[:_MAX_VALUE_LENGTH] + ("…" if len(trimmed) > _MAX_VALUE_LENGTH else "")


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalise structured metadata for event emission."""

    if not values:
        return {}
    normalised: Dict[str, Any] = {}
    for key, raw_value in values.items():
        if not key:
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "":
            continue
        normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a structured event as a single log line with ``key=value`` details."""

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
    }
    if details:
        extra["event_payload"] = details
    logger.log(level, log_message, extra=extra)


def emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a structured database event."""

    emit_structured_event(
        "DB_QUERY",
        action,
        payload=payload,
        duration_ms=duration_ms,
        level=level,
        logger=logger,
    )


def emit_export_event(
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a structured bulk export lifecycle event."""

    emit_structured_event(
        "EXPORT",
        message,
        payload=payload,
        duration_ms=duration_ms,
        level=level,
        logger=logger,
    )


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_db_event",
    "emit_export_event",
    "emit_structured_event",
    "normalize_context",
    "sanitize_context_value",
]
