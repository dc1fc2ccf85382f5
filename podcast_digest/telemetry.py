from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "podcast_digest.telemetry"

# Attribute keys containing any of these are never shipped, whatever the value.
_REDACTED_KEY_FRAGMENTS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "body",
        "content",
        "cookie",
        "message",
        "payload",
        "secret",
        "summary_text",
        "text",
        "token",
        "transcript",
    }
)
_MAX_VALUE_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        _ = (event_name, attributes)


class StructlogTelemetrySink:
    """Ship telemetry events as structured records on the telemetry logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass
class MemoryTelemetrySink:
    events: list[tuple[str, dict[str, TelemetryValue]]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        with self._lock:
            self.events.append((event_name, dict(attributes)))

    def names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.events]


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        try:
            self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))
        except Exception:
            logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
                "telemetry emit_failed event=%s",
                event_name,
                exc_info=True,
            )


def build_telemetry_client(
    *,
    enabled: bool,
    sink: Literal["none", "log", "memory"],
) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructlogTelemetrySink())
    if sink == "memory":
        return TelemetryClient(enabled=True, sink=MemoryTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "telemetry unsupported_sink sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(fragment in key for fragment in _REDACTED_KEY_FRAGMENTS):
            sanitized[key] = "[redacted]"
        else:
            sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _sanitize_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_VALUE_LENGTH:
            return f"{compact[:_MAX_VALUE_LENGTH]}..."
        return compact
    return type(value).__name__
