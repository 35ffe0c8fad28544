"""Telemetry reporter and sinks.

A ``TelemetryReporter`` is constructed explicitly by whoever owns the
session (the TUI app or a test) and handed to the components that emit
events. ``dispose()`` ends its lifecycle; later events are dropped.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from threading import Lock
from typing import Protocol

from planwright.state import append_jsonl

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TelemetryEvent:
    name: str
    properties: dict[str, str] = field(default_factory=dict)
    measurements: dict[str, float] = field(default_factory=dict)
    timestamp: float = 0.0


class TelemetrySink(Protocol):
    """Sink interface used to collect telemetry events."""

    def record(self, event: TelemetryEvent) -> None: ...


class InMemoryTelemetrySink:
    """Ring-buffer sink for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self.capacity = max(10, capacity)
        self.buffer: deque[TelemetryEvent] = deque(maxlen=self.capacity)
        self.lock = Lock()

    def record(self, event: TelemetryEvent) -> None:
        with self.lock:
            self.buffer.append(event)

    def tail(self, limit: int | None = None) -> list[TelemetryEvent]:
        with self.lock:
            events = list(self.buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [e.name for e in self.tail()]

    def __len__(self) -> int:
        with self.lock:
            return len(self.buffer)


class JsonlTelemetrySink:
    """Appends one JSON object per event to a local file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(self, event: TelemetryEvent) -> None:
        append_jsonl(self.path, asdict(event))


class TelemetryReporter:
    """Owned telemetry handle.

    Sink errors are logged and swallowed: telemetry never interrupts the
    panel.
    """

    def __init__(self, sink: TelemetrySink | None, enabled: bool = True) -> None:
        self.sink = sink
        self.enabled = enabled and sink is not None
        self.disposed = False

    def send_event(
        self,
        name: str,
        properties: dict[str, str] | None = None,
        measurements: dict[str, float] | None = None,
    ) -> None:
        if not self.enabled or self.disposed or self.sink is None:
            return
        event = TelemetryEvent(
            name=name,
            properties=dict(properties or {}),
            measurements=dict(measurements or {}),
            timestamp=time.time(),
        )
        try:
            self.sink.record(event)
        except (OSError, TypeError, ValueError):
            logger.exception("Telemetry error while recording %s", name)

    def dispose(self) -> None:
        self.disposed = True

    def __enter__(self) -> TelemetryReporter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


def null_reporter() -> TelemetryReporter:
    return TelemetryReporter(sink=None, enabled=False)
