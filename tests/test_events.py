import logging
from datetime import date
from pathlib import Path

from instructor_hub.services.events import (
    emit_export_event,
    normalize_context,
    sanitize_context_value,
)


def test_sanitize_context_value_handles_common_types() -> None:
    assert sanitize_context_value(date(2024, 1, 2)) == "2024-01-02"
    assert sanitize_context_value(Path("a/b")) == str(Path("a/b"))
    assert sanitize_context_value(["x", "y"]) == "x, y"
    assert sanitize_context_value("   ") is None
    assert sanitize_context_value("z" * 250).endswith("…")
    assert sanitize_context_value({"keep": 1, "drop": ""}) == {"keep": 1}


def test_normalize_context_drops_empty_values() -> None:
    assert normalize_context({"a": 1, "b": None, "": "x", "c": " "}) == {"a": 1}
    assert normalize_context(None) == {}


def test_emit_export_event_logs_one_line(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="instructor_hub.events"):
        emit_export_event("Bulk export completed", payload={"files": 3}, duration_ms=12.5)

    record = caplog.records[-1]
    assert record.getMessage() == "[EXPORT] Bulk export completed (files=3, duration_ms=12.5)"
    assert record.event_type == "EXPORT"
    assert record.event_payload == {"files": 3, "duration_ms": 12.5}
