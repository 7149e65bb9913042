"""Tests for the session event log, progress snapshot and control flags."""

import json
from unittest.mock import MagicMock

import pytest

from capy_web.schemas.session_schema import EventType, ExecutionStatus
from capy_web.telemetry.sinks import JsonlEventSink
from capy_web.telemetry.telemetry_engine import TelemetryEngine


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry(clock):
    return TelemetryEngine("SESSION-1", max_events=100, clock=clock)


class TestEvents:
    """Test event recording and observers."""

    def test_record_event(self, telemetry):
        event = telemetry.record_blocked("https://pinterest.com/x", "Low-quality source", "PATH-1")

        assert event.id.startswith("EVT-")
        assert event.type == EventType.BLOCKED
        assert event.session_id == "SESSION-1"
        assert event.path_id == "PATH-1"
        assert event.data == {"url": "https://pinterest.com/x", "reason": "Low-quality source"}

    def test_observer_and_disposer(self, telemetry):
        seen = []
        dispose = telemetry.on_event(seen.append)

        telemetry.record_extraction("https://acme.com/", 2)
        dispose()
        dispose()
        telemetry.record_extraction("https://acme.com/", 3)

        assert [e.data["count"] for e in seen] == [2]

    def test_failing_observer_does_not_break_stream(self, telemetry):
        broken = MagicMock(side_effect=ValueError("observer bug"))
        seen = []
        telemetry.on_event(broken)
        telemetry.on_event(seen.append)

        telemetry.record_error("timeout", url="https://acme.com/")

        broken.assert_called_once()
        assert len(seen) == 1
        assert len(telemetry.get_events()) == 1

    def test_event_log_is_capped(self, clock):
        telemetry = TelemetryEngine("SESSION-1", max_events=3, clock=clock)
        for i in range(5):
            telemetry.record_extraction(f"https://acme.com/{i}", i)

        events = telemetry.get_events()
        assert [e.data["count"] for e in events] == [2, 3, 4]
        assert telemetry.get_stats()["dropped_events"] == 2

    def test_filtering(self, telemetry):
        telemetry.record_extraction("https://acme.com/", 1, path_id="PATH-1")
        telemetry.record_extraction("https://acme.com/", 1, path_id="PATH-2")
        telemetry.record_path_terminated("PATH-1", "Low marginal gain", early=True)

        assert len(telemetry.get_events(path_id="PATH-1")) == 2
        assert len(telemetry.get_events(EventType.EXTRACTION)) == 2
        terminated = telemetry.get_events(EventType.PATH_TERMINATED)[0]
        assert terminated.data == {"reason": "Low marginal gain", "early": True}

    def test_verification_and_strategy_shift(self, telemetry):
        telemetry.record_verification("CLAIM-1", "contradiction", "contradicted")
        telemetry.record_strategy_shift("Plan ready", "planning", "executing", {"paths": 2})

        shift = telemetry.get_events(EventType.STRATEGY_SHIFT)[0]
        assert shift.data == {"reason": "Plan ready", "from": "planning", "to": "executing", "paths": 2}
        assert telemetry.get_progress().current_phase == "executing"


class TestProgress:
    """Test the derived progress snapshot."""

    def test_counters(self, telemetry, clock):
        telemetry.start("planning")
        telemetry.record_page_load("https://acme.com/", True, 120)
        telemetry.record_claim_found("CLAIM-1", "pricing", 0.8, "https://acme.com/")
        telemetry.update_confidence(0.4, estimated_remaining_ms=1500.7)
        telemetry.update_active_paths(2)
        clock.now += 2.5

        progress = telemetry.get_progress()
        assert progress.pages_visited == 1
        assert progress.claims_found == 1
        assert progress.confidence == 0.4
        assert progress.estimated_remaining_ms == 1500
        assert progress.active_paths == 2
        assert progress.elapsed_ms == 2500

    def test_progress_observers(self, telemetry):
        snapshots = []
        telemetry.on_progress(snapshots.append)
        telemetry.record_page_load("https://acme.com/", True)
        telemetry.set_plan_summary("1 questions, 1 domains, 1 paths (standard)")

        assert snapshots[0].pages_visited == 1
        assert snapshots[-1].plan_summary.startswith("1 questions")

    def test_snapshot_is_a_copy(self, telemetry):
        snapshot = telemetry.get_progress()
        telemetry.record_page_load("https://acme.com/", True)
        assert snapshot.pages_visited == 0

    def test_status_change_events(self, telemetry):
        telemetry.update_status(ExecutionStatus.PLANNING)
        telemetry.update_status(ExecutionStatus.PLANNING)
        telemetry.update_status(ExecutionStatus.EXECUTING)

        changes = telemetry.get_events(EventType.STATUS_CHANGE)
        assert [(e.data["from"], e.data["to"]) for e in changes] == [
            ("idle", "planning"),
            ("planning", "executing"),
        ]

    def test_complete_observers(self, telemetry):
        observer = MagicMock()
        telemetry.on_complete(observer)
        result = object()
        telemetry.notify_complete(result)
        observer.assert_called_once_with(result)


class TestControl:
    """Test pause, resume and stop signaling."""

    def test_pause_and_resume_toggle_status(self, telemetry):
        telemetry.update_status(ExecutionStatus.EXECUTING)

        telemetry.pause()
        assert telemetry.is_paused()
        assert telemetry.get_progress().status == ExecutionStatus.PAUSED

        telemetry.resume()
        assert not telemetry.is_paused()
        assert telemetry.get_progress().status == ExecutionStatus.EXECUTING

    def test_pause_while_planning_keeps_status(self, telemetry):
        telemetry.update_status(ExecutionStatus.PLANNING)
        telemetry.pause()
        assert telemetry.is_paused()
        assert telemetry.get_progress().status == ExecutionStatus.PLANNING

    def test_stop_keeps_first_reason(self, telemetry):
        telemetry.stop("Operator cancelled")
        telemetry.stop("Second stop")

        assert telemetry.has_pending_stop()
        assert telemetry.stop_reason == "Operator cancelled"
        assert telemetry.get_stats()["commands"] == 1
        assert telemetry.get_events(EventType.STRATEGY_SHIFT)[0].data["to"] == "stopping"

    def test_export(self, telemetry):
        telemetry.record_blocked("https://x.com/", "Low-quality source")
        telemetry.pause()
        exported = telemetry.export()

        assert exported["session_id"] == "SESSION-1"
        assert exported["events"][0]["type"] == "blocked"
        assert exported["commands"][0]["type"] == "pause"
        json.dumps(exported)


class TestJsonlEventSink:
    """Test the JSON Lines sink."""

    def test_events_appended(self, telemetry, tmp_path):
        sink = JsonlEventSink(tmp_path / "runs" / "session.jsonl")
        dispose = sink.attach(telemetry)

        telemetry.record_extraction("https://acme.com/", 2, path_id="PATH-1")
        telemetry.record_blocked("https://x.com/", "Low-quality source")
        dispose()
        telemetry.record_extraction("https://acme.com/", 3)

        lines = (tmp_path / "runs" / "session.jsonl").read_text().splitlines()
        assert sink.written == 2
        assert [json.loads(line)["type"] for line in lines] == ["extraction", "blocked"]
        assert json.loads(lines[0])["path_id"] == "PATH-1"
