import logging
from pathlib import Path

from deckshow.services.events import (
    emit_file_event,
    emit_task_event,
    normalize_context,
    sanitize_context_value,
)
from deckshow.services.storage import FileSystemSlideSetRepository


def test_sanitize_context_value_shortens_and_normalises():
    assert sanitize_context_value(Path("a") / "b") == "a/b"
    assert sanitize_context_value("   ") is None
    assert sanitize_context_value(["x", "y"]) == "x, y"
    assert sanitize_context_value("z" * 250).endswith("…")


def test_normalize_context_drops_empty_entries():
    assert normalize_context({"a": 1, "b": None, "": "x", "c": " "}) == {"a": 1}


def test_file_event_carries_structured_extras(caplog):
    caplog.set_level(logging.INFO, logger="deckshow.events")

    emit_file_event("rasterize_pdf", payload={"pages": 3}, duration_ms=12.345)

    record = caplog.records[-1]
    assert record.event_type == "FILE_OP"
    assert record.event_message == "rasterize_pdf"
    assert record.event_payload == {"pages": 3, "duration_ms": 12.35}
    assert "[FILE_OP] rasterize_pdf" in record.getMessage()


def test_task_event_includes_phase(caplog):
    caplog.set_level(logging.INFO, logger="deckshow.events")

    emit_task_event("queued", "Slide conversion queued", payload={"job_id": "abc"})

    record = caplog.records[-1]
    assert record.event_type == "TASK_STATE"
    assert record.event_payload == {"phase": "queued", "job_id": "abc"}


def test_set_creation_is_logged(temp_config, caplog):
    caplog.set_level(logging.INFO, logger="deckshow.events")

    record = FileSystemSlideSetRepository(temp_config).create_set("Deck")

    events = [entry for entry in caplog.records if getattr(entry, "event_message", None) == "create_set"]
    assert events
    assert events[-1].event_payload["set_id"] == record.set_id
    assert events[-1].event_payload["policy"] == "suffix"
