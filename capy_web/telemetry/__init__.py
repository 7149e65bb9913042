"""Session telemetry, progress snapshots and control signaling."""

from capy_web.telemetry.sinks import JsonlEventSink
from capy_web.telemetry.telemetry_engine import TelemetryEngine

__all__ = ["JsonlEventSink", "TelemetryEngine"]
