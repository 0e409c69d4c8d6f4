from __future__ import annotations

import logging
from collections import UserDict, deque
from types import MappingProxyType

import pytest

from media_player.web.debug_log import DebugLogHandler


@pytest.fixture
def handler() -> DebugLogHandler:
    return DebugLogHandler(capacity=3)


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("media_player.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_build_key_handles_nested_unhashable_structures(handler: DebugLogHandler) -> None:
    context = {
        "attrs": MappingProxyType({
            "numbers": [1, 2, 3],
            "details": {"enabled": True, "thresholds": {"low", "high"}},
        }),
        "extra": UserDict({"history": deque(({"event": "start"}, {"event": "stop"}))}),
    }

    key = handler._build_key("TEST", "message", context, {"request_id": "abc123"})

    try:
        hash(key)
    except TypeError as exc:  # pragma: no cover - the assertion below would fail first
        pytest.fail(f"Key is not hashable: {exc}")


def test_build_key_is_order_insensitive(handler: DebugLogHandler) -> None:
    key_a = handler._build_key("TEST", "message", {"values": {"b": 2, "a": 1}}, {})
    key_b = handler._build_key("TEST", "message", {"values": {"a": 1, "b": 2}}, {})

    assert key_a == key_b


def test_repeated_events_are_folded_and_moved_to_the_end(handler: DebugLogHandler) -> None:
    handler.emit(_record("first", event_type="STORE_OP", event_context={"id": "1"}))
    handler.emit(_record("second"))
    handler.emit(_record("first", event_type="STORE_OP", event_context={"id": "1"}))

    entries = handler.collect()

    assert [entry["message"] for entry in entries] == ["second", "first"]
    assert entries[-1]["count"] == 2
    assert entries[-1]["id"] == handler.last_id == 3


def test_collect_after_returns_only_newer_entries(handler: DebugLogHandler) -> None:
    handler.emit(_record("one"))
    marker = handler.last_id
    handler.emit(_record("two"))

    assert [entry["message"] for entry in handler.collect(after=marker)] == ["two"]


def test_capacity_evicts_oldest_entries(handler: DebugLogHandler) -> None:
    for index in range(5):
        handler.emit(_record(f"message {index}"))

    entries = handler.collect()

    assert [entry["message"] for entry in entries] == ["message 2", "message 3", "message 4"]
    assert all("_key" not in entry for entry in entries)


def test_export_text_lists_entries(handler: DebugLogHandler) -> None:
    assert handler.export_text().startswith("# Debug log is currently empty")

    handler.emit(_record("scan", event_type="FILE_OP", event_context={"count": 3}))

    text = handler.export_text()
    assert "FILE_OP: scan" in text
    assert '"count": 3' in text
