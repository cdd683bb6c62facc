from __future__ import annotations

import json
from pathlib import Path

import pytest

from dreamcut import telemetry


def test_events_are_recorded_and_filterable() -> None:
    telemetry.emit_event("job.claimed", {"job_id": "j1"})
    telemetry.emit_event("job.completed", {"job_id": "j1"})
    assert [ev["name"] for ev in telemetry.get_events()] == ["job.claimed", "job.completed"]
    assert telemetry.get_events("job.completed") == [{"name": "job.completed", "payload": {"job_id": "j1"}}]
    telemetry.clear_events()
    assert telemetry.get_events() == []


def test_events_are_appended_to_log_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    log_path = tmp_path / "telemetry.jsonl"
    monkeypatch.setenv("DREAMCUT_TELEMETRY_LOG", str(log_path))
    telemetry.emit_event("brief.assembled", {"brief_id": "brief-1"})
    telemetry.emit_event("brief.assembled")
    lines = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert lines == [
        {"name": "brief.assembled", "payload": {"brief_id": "brief-1"}},
        {"name": "brief.assembled", "payload": {}},
    ]


def test_buffer_keeps_only_the_most_recent_events() -> None:
    for n in range(telemetry.MAX_EVENTS + 5):
        telemetry.emit_event("job.claimed", {"n": n})
    events = telemetry.get_events()
    assert len(events) == telemetry.MAX_EVENTS
    assert events[0]["payload"] == {"n": 5}
    assert events[-1]["payload"] == {"n": telemetry.MAX_EVENTS + 4}
