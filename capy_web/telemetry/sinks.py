"""Event sinks that persist a session's telemetry stream.

A sink is just an event observer; attach() registers it on a
TelemetryEngine and returns the disposer.
"""

from pathlib import Path
from typing import Union

from capy_web.config.logging import get_logger
from capy_web.schemas.session_schema import TelemetryEvent
from capy_web.telemetry.telemetry_engine import Disposer, TelemetryEngine


class JsonlEventSink:
    """
    Append every telemetry event to a JSON Lines file.

    Usage:
        sink = JsonlEventSink("runs/session.jsonl")
        dispose = sink.attach(engine.telemetry)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.written = 0
        self.logger = get_logger("JsonlEventSink")

    def __call__(self, event: TelemetryEvent) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(event.model_dump_json())
            handle.write("\n")
        self.written += 1

    def attach(self, telemetry: TelemetryEngine) -> Disposer:
        """Subscribe to a telemetry engine's event stream."""
        self.logger.debug("Sink attached", path=str(self.path), session_id=telemetry.session_id)
        return telemetry.on_event(self)
