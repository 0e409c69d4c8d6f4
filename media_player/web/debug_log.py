"""In-memory log buffer feeding the ``/api/debug/logs`` endpoint."""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Mapping, Set as AbstractSet
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..logging_utils import DEFAULT_LOG_FORMAT


class DebugLogHandler(logging.Handler):
    """Keep the most recent log entries, folding repeats into a single entry.

    Each entry carries a monotonically increasing ``id`` so the UI can poll
    with ``?after=<id>`` and only receive what changed. A repeated event
    (same type, message and context) is moved to the end with a bumped
    ``count`` instead of being appended again.
    """

    def __init__(self, capacity: int = 500) -> None:
        super().__init__(level=logging.DEBUG)
        self._capacity = max(1, capacity)
        self._entries: Deque[Dict[str, Any]] = deque()
        self._entry_index: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._last_id = 0
        self.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    def _freeze_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return tuple(sorted((str(key), self._freeze_value(item)) for key, item in value.items()))
        if isinstance(value, AbstractSet):
            return tuple(sorted(repr(self._freeze_value(item)) for item in value))
        if isinstance(value, (list, tuple, deque)):
            return tuple(self._freeze_value(item) for item in value)
        try:
            hash(value)
        except TypeError:
            return repr(value)
        return value

    def _build_key(
        self,
        event_type: str,
        message: str,
        context: Mapping[str, Any],
        correlation: Mapping[str, Any],
    ) -> Tuple[Any, ...]:
        return (
            event_type,
            message,
            self._freeze_value(context),
            self._freeze_value({k: v for k, v in correlation.items() if k != "request_id"}),
        )

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401 - inherited documentation
        rendered = record.getMessage()
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            rendered = f"{rendered}\n{formatter.formatException(record.exc_info)}"

        message = str(getattr(record, "event_message", None) or rendered)
        event_type = str(getattr(record, "event_type", None) or record.name)
        context = getattr(record, "event_context", None) or {}
        correlation = getattr(record, "event_correlation", None) or {}
        duration_ms = getattr(record, "event_duration_ms", None)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        key = self._build_key(event_type, message, context, correlation)

        with self._lock:
            self._last_id += 1
            entry = self._entry_index.get(key)
            if entry is not None:
                self._entries.remove(entry)
                entry["count"] += 1
            else:
                entry = {
                    "message": message,
                    "event_type": event_type,
                    "logger": record.name,
                    "count": 1,
                    "first_seen": timestamp,
                }
                self._entry_index[key] = entry
            entry["id"] = self._last_id
            entry["level"] = record.levelname
            entry["last_seen"] = timestamp
            entry["_key"] = key
            if context:
                entry["context"] = dict(context)
            if correlation:
                entry.update(correlation)
            if rendered != message:
                entry["rendered"] = rendered
            if duration_ms is not None:
                entry["last_duration_ms"] = float(duration_ms)
            self._entries.append(entry)

            while len(self._entries) > self._capacity:
                oldest = self._entries.popleft()
                self._entry_index.pop(oldest.get("_key"), None)

    @staticmethod
    def _serialize_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in entry.items() if not key.startswith("_")}

    def collect(self, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        with self._lock:
            if after is None or after <= 0:
                data = list(self._entries)
            else:
                data = [entry for entry in self._entries if entry["id"] > after]
            return [self._serialize_entry(entry) for entry in data[-limit:]]

    def export_text(self) -> str:
        entries = self.collect(limit=self._capacity)
        if not entries:
            return "# Debug log is currently empty.\n"
        lines: List[str] = []
        for entry in entries:
            line = (
                f"[{entry['last_seen']}] {entry['level']:<7} {entry['event_type']}: "
                f"{entry['message']}"
            )
            if entry.get("count", 1) > 1:
                line += f" (x{entry['count']})"
            if entry.get("context"):
                line += " | context=" + json.dumps(entry["context"], ensure_ascii=False, sort_keys=True)
            lines.append(line)
        return "\n".join(lines) + "\n"

    @property
    def last_id(self) -> int:
        with self._lock:
            return self._last_id


__all__ = ["DebugLogHandler"]
