"""Telemetry and control state for one research session.

Records an append-only event log (capped), derives a ProgressState
snapshot from it, and holds the pause / stop signaling state the
orchestrator polls.

Observers register explicitly and get back a disposer; there is no global
bus. An observer that raises is logged and skipped so one faulty consumer
cannot break the event stream.

Usage:
    telemetry = TelemetryEngine(session_id)
    dispose = telemetry.on_event(lambda event: print(event.type))
    telemetry.record_blocked("https://pinterest.com/x", "Low-quality source")
    dispose()
"""

import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.schemas.session_schema import (
    EventType,
    ExecutionStatus,
    ProgressState,
    ResearchResult,
    TelemetryEvent,
)

Disposer = Callable[[], None]
EventObserver = Callable[[TelemetryEvent], None]
ProgressObserver = Callable[[ProgressState], None]
CompleteObserver = Callable[[ResearchResult], None]


class TelemetryEngine:
    """
    Session event log, progress snapshot and control flags.

    Attributes:
        session_id: Research session this engine belongs to
        max_events: Event log capacity; the oldest events are dropped first
    """

    def __init__(
        self,
        session_id: str,
        max_events: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self.max_events = max_events or settings.max_telemetry_events
        self._clock = clock
        self._events: Deque[TelemetryEvent] = deque(maxlen=self.max_events)
        self._progress = ProgressState()
        self._started_at: Optional[float] = None
        self._commands: List[Dict[str, Any]] = []
        self._paused = False
        self._stop_requested = False
        self._stop_reason: Optional[str] = None
        self._event_observers: List[EventObserver] = []
        self._progress_observers: List[ProgressObserver] = []
        self._complete_observers: List[CompleteObserver] = []
        self._dropped_events = 0
        self.logger = get_logger("Telemetry").bind(session_id=session_id)

    # ── Observer registration ──────────────────────────────────────

    @staticmethod
    def _register(observers: list, callback: Callable) -> Disposer:
        observers.append(callback)

        def dispose() -> None:
            if callback in observers:
                observers.remove(callback)

        return dispose

    def on_event(self, callback: EventObserver) -> Disposer:
        """Subscribe to every recorded event."""
        return self._register(self._event_observers, callback)

    def on_progress(self, callback: ProgressObserver) -> Disposer:
        """Subscribe to progress snapshots (sent after every change)."""
        return self._register(self._progress_observers, callback)

    def on_complete(self, callback: CompleteObserver) -> Disposer:
        """Subscribe to the final result."""
        return self._register(self._complete_observers, callback)

    def _notify(self, observers: list, payload: Any) -> None:
        for callback in list(observers):
            try:
                callback(payload)
            except Exception:
                self.logger.exception("Telemetry observer failed")

    def notify_complete(self, result: ResearchResult) -> None:
        """Deliver the final result to completion observers."""
        self._notify(self._complete_observers, result)

    # ── Event recording ────────────────────────────────────────────

    def record_event(
        self,
        event_type: EventType,
        data: Optional[Dict[str, Any]] = None,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """
        Append an event to the log and notify observers.

        Args:
            event_type: Event type
            data: Event payload
            path_id: Execution path the event belongs to

        Returns:
            The recorded event
        """
        event = TelemetryEvent(
            id=f"EVT-{uuid.uuid4().hex[:10]}",
            type=event_type,
            session_id=self.session_id,
            path_id=path_id,
            data=data or {},
        )
        if len(self._events) == self.max_events:
            self._dropped_events += 1
        self._events.append(event)
        self._notify(self._event_observers, event)
        return event

    def record_page_load(
        self,
        url: str,
        success: bool,
        load_time_ms: int = 0,
        from_cache: bool = False,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """Record a page visit and count it in progress."""
        self._progress.pages_visited += 1
        event = self.record_event(
            EventType.PAGE_LOAD,
            {"url": url, "success": success, "load_time_ms": load_time_ms, "from_cache": from_cache},
            path_id,
        )
        self._publish_progress()
        return event

    def record_extraction(self, url: str, count: int, path_id: Optional[str] = None) -> TelemetryEvent:
        return self.record_event(EventType.EXTRACTION, {"url": url, "count": count}, path_id)

    def record_claim_found(
        self,
        claim_id: str,
        category: str,
        confidence_score: float,
        url: str,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """Record a new or merged claim."""
        self._progress.claims_found += 1
        event = self.record_event(
            EventType.CLAIM_FOUND,
            {
                "claim_id": claim_id,
                "category": category,
                "confidence_score": confidence_score,
                "url": url,
            },
            path_id,
        )
        self._publish_progress()
        return event

    def record_verification(
        self,
        claim_id: str,
        kind: str,
        confidence: str,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """Record a corroboration or contradiction on a claim."""
        return self.record_event(
            EventType.VERIFICATION,
            {"claim_id": claim_id, "kind": kind, "confidence": confidence},
            path_id,
        )

    def record_strategy_shift(
        self,
        reason: str,
        from_strategy: str,
        to_strategy: str,
        details: Optional[Dict[str, Any]] = None,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """Record a change of approach (plan ready, path cut short, stop)."""
        self._progress.current_phase = to_strategy
        self.logger.info("Strategy shift", reason=reason, to_strategy=to_strategy)
        return self.record_event(
            EventType.STRATEGY_SHIFT,
            {"reason": reason, "from": from_strategy, "to": to_strategy, **(details or {})},
            path_id,
        )

    def record_path_terminated(
        self,
        path_id: str,
        reason: str,
        early: bool,
    ) -> TelemetryEvent:
        return self.record_event(
            EventType.PATH_TERMINATED, {"reason": reason, "early": early}, path_id
        )

    def record_blocked(self, url: str, reason: str, path_id: Optional[str] = None) -> TelemetryEvent:
        """Record a URL that was skipped or refused. Non-fatal."""
        self.logger.debug("URL blocked", url=url, reason=reason)
        return self.record_event(EventType.BLOCKED, {"url": url, "reason": reason}, path_id)

    def record_error(
        self,
        message: str,
        url: Optional[str] = None,
        fatal: bool = False,
        path_id: Optional[str] = None,
    ) -> TelemetryEvent:
        """
        Record an error.

        Args:
            message: Error description
            url: URL involved, if any
            fatal: True when the error ended its path (or the session when no path_id)
            path_id: Path the error belongs to
        """
        if fatal:
            self.logger.error("Fatal error recorded", error=message, path_id=path_id)
        else:
            self.logger.warning("Error recorded", error=message, url=url)
        return self.record_event(
            EventType.ERROR, {"message": message, "url": url, "fatal": fatal}, path_id
        )

    # ── Progress ───────────────────────────────────────────────────

    def start(self, phase: str = "starting") -> None:
        """Start the session clock."""
        self._started_at = self._clock()
        self._progress.current_phase = phase
        self._publish_progress()

    def update_status(self, status: ExecutionStatus) -> None:
        """Transition the session status and emit a status_change event."""
        previous = self._progress.status
        if previous == status:
            return
        self._progress.status = status
        self.record_event(EventType.STATUS_CHANGE, {"from": previous.value, "to": status.value})
        self._publish_progress()

    def set_plan_summary(self, summary: str) -> None:
        self._progress.plan_summary = summary
        self._publish_progress()

    def update_active_paths(self, count: int) -> None:
        self._progress.active_paths = count
        self._publish_progress()

    def update_confidence(self, confidence: float, estimated_remaining_ms: Optional[float] = None) -> None:
        self._progress.confidence = confidence
        self._progress.estimated_remaining_ms = (
            int(estimated_remaining_ms) if estimated_remaining_ms is not None else None
        )
        self._publish_progress()

    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((self._clock() - self._started_at) * 1000)

    def get_progress(self) -> ProgressState:
        """Snapshot of current progress (a copy, safe to keep)."""
        return self._progress.model_copy(update={"elapsed_ms": self.elapsed_ms()})

    def _publish_progress(self) -> None:
        if self._progress_observers:
            self._notify(self._progress_observers, self.get_progress())

    # ── Control ────────────────────────────────────────────────────

    def _command(self, command_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._commands.append({
            "type": command_type,
            "payload": payload or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def pause(self) -> None:
        """Request that no new paths be dequeued."""
        if self._paused:
            return
        self._paused = True
        self._command("pause")
        if self._progress.status == ExecutionStatus.EXECUTING:
            self.update_status(ExecutionStatus.PAUSED)

    def resume(self) -> None:
        """Lift a pause."""
        if not self._paused:
            return
        self._paused = False
        self._command("resume")
        if self._progress.status == ExecutionStatus.PAUSED:
            self.update_status(ExecutionStatus.EXECUTING)

    def stop(self, reason: str = "User requested stop") -> None:
        """Request that the session stop. The first reason recorded wins."""
        if self._stop_requested:
            return
        self._stop_requested = True
        self._stop_reason = reason
        self._command("stop", {"reason": reason})
        self.record_strategy_shift(reason, self._progress.current_phase, "stopping")

    def is_paused(self) -> bool:
        return self._paused

    def has_pending_stop(self) -> bool:
        return self._stop_requested

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    # ── Queries ────────────────────────────────────────────────────

    def get_events(
        self,
        event_type: Optional[EventType] = None,
        path_id: Optional[str] = None,
    ) -> List[TelemetryEvent]:
        """Events in recording order, optionally filtered."""
        return [
            event for event in self._events
            if (event_type is None or event.type == event_type)
            and (path_id is None or event.path_id == path_id)
        ]

    def get_stats(self) -> Dict[str, Any]:
        """Event counts by type plus control state."""
        by_type: Dict[str, int] = {}
        for event in self._events:
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._events),
            "dropped_events": self._dropped_events,
            "events_by_type": by_type,
            "commands": len(self._commands),
            "paused": self._paused,
            "stop_requested": self._stop_requested,
            "elapsed_ms": self.elapsed_ms(),
        }

    def export(self) -> Dict[str, Any]:
        """JSON-compatible dump of the session's telemetry."""
        return {
            "session_id": self.session_id,
            "progress": self.get_progress().model_dump(mode="json"),
            "events": [event.model_dump(mode="json") for event in self._events],
            "commands": list(self._commands),
            "stats": self.get_stats(),
        }
