from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from podcast_digest.telemetry import (
    MemoryTelemetrySink,
    StructlogTelemetrySink,
    TelemetryClient,
    build_telemetry_client,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _BrokenSink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        raise RuntimeError("sink offline")


def test_telemetry_client_redacts_sensitive_fields() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "job.process.start",
        summary_id="sum_123",
        payload={"url": "https://youtu.be/x"},
        transcript="very long transcript text",
        summary_text="## Overview",
        api_key="secret",
        attempts=3,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "job.process.start"
    assert attributes["summary_id"] == "sum_123"
    assert attributes["attempts"] == 3
    assert attributes["payload"] == "[redacted]"
    assert attributes["transcript"] == "[redacted]"
    assert attributes["summary_text"] == "[redacted]"
    assert attributes["api_key"] == "[redacted]"


def test_long_values_are_truncated_and_objects_named() -> None:
    sink = _CaptureSink()
    TelemetryClient(enabled=True, sink=sink).emit(
        "worker.tick.error",
        error_type="x" * 400,
        started=object(),
    )

    _, attributes = sink.events[0]
    assert attributes["error_type"] == "x" * 160 + "..."
    assert attributes["started"] == "object"


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("job.process.start", summary_id="sum_1")
    assert sink.events == []


def test_sink_failures_do_not_propagate() -> None:
    TelemetryClient(enabled=True, sink=_BrokenSink()).emit("job.process.start")


def test_build_telemetry_client_sinks() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert isinstance(build_telemetry_client(enabled=True, sink="log").sink, StructlogTelemetrySink)

    memory_client = build_telemetry_client(enabled=True, sink="memory")
    memory_client.emit("intake.submitted", platform="youtube")
    assert isinstance(memory_client.sink, MemoryTelemetrySink)
    assert memory_client.sink.events == [("intake.submitted", {"platform": "youtube"})]
