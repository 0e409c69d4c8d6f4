"""Structured event helpers shared across the application."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("media_player.events")

STORE_EVENT = "STORE_OP"
FILE_EVENT = "FILE_OP"
COMMAND_EVENT = "COMMAND"

_MAX_VALUE_LENGTH = 200


def sanitize_context_value(value: Any) -> Any:
    """Return a JSON-serialisable representation for *value*."""

    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
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
        joined = " ".join(str(item) for item in value)
    else:
        joined = str(value)
    trimmed = joined.strip()
    if not trimmed:
        return None
    if len(trimmed) > _MAX_VALUE_LENGTH:
        return trimmed[:_MAX_VALUE_LENGTH] + "…"
    return trimmed


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty entries and sanitise the rest."""

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
    context: Optional[Dict[str, Any]] = None,
    correlation: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log *message* tagged with *event_type* and flattened context details."""

    base_message = str(message).strip()
    normalised_context = normalize_context(context)
    normalised_correlation = normalize_context(correlation)
    details = {**normalised_correlation, **normalised_context}
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    details_text = ", ".join(f"{key}={value}" for key, value in details.items())
    display_message = f"[{event_type}] {base_message}" if event_type else base_message
    log_message = f"{display_message} ({details_text})" if details_text else display_message
    extra: Dict[str, Any] = {
        "event_message": base_message,
        "event_type": event_type or "",
        "event_context": normalised_context,
        "event_correlation": normalised_correlation,
    }
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, log_message, extra=extra)


def emit_store_event(action: str, **kwargs: Any) -> None:
    """Emit a playlist/settings store event."""

    emit_structured_event(STORE_EVENT, action, **kwargs)


def emit_file_event(operation: str, **kwargs: Any) -> None:
    """Emit a file-system event."""

    emit_structured_event(FILE_EVENT, operation, **kwargs)


def emit_command_event(command: str, **kwargs: Any) -> None:
    """Emit an external command event (``bluetoothctl``, ``rfkill``)."""

    emit_structured_event(COMMAND_EVENT, command, **kwargs)


__all__ = [
    "COMMAND_EVENT",
    "DEFAULT_EVENT_LOGGER",
    "FILE_EVENT",
    "STORE_EVENT",
    "emit_command_event",
    "emit_file_event",
    "emit_store_event",
    "emit_structured_event",
    "normalize_context",
    "sanitize_context_value",
]
