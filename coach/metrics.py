from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque


@dataclass
class Metrics:
    """
    In-process metric sink, read back by tests.

    Histograms keep only the most recent `max_samples` observations per name;
    the Prometheus exporter holds the long-run bucket counts.
    """

    max_samples: int = 2048
    counters: dict[str, int] = field(default_factory=dict)
    gauges: dict[str, int] = field(default_factory=dict)
    samples: dict[str, Deque[int]] = field(default_factory=dict)

    def inc(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + int(value)

    def observe(self, name: str, value: int) -> None:
        window = self.samples.get(name)
        if window is None:
            window = self.samples[name] = deque(maxlen=max(1, self.max_samples))
        window.append(int(value))

    def set(self, name: str, value: int) -> None:
        self.gauges[name] = int(value)

    def get(self, name: str) -> int:
        return self.counters.get(name, 0)

    def get_gauge(self, name: str) -> int:
        return self.gauges.get(name, 0)

    def get_hist(self, name: str) -> list[int]:
        return list(self.samples.get(name, ()))


class CompositeMetrics:
    """
    Write-only fan-out: one call site feeds the service's own `Metrics` and
    the process-level Prometheus exporter.
    """

    def __init__(self, *sinks: Any) -> None:
        self.sinks: tuple[Any, ...] = tuple(s for s in sinks if s is not None)

    def inc(self, name: str, value: int = 1) -> None:
        for sink in self.sinks:
            sink.inc(name, value)

    def observe(self, name: str, value: int) -> None:
        for sink in self.sinks:
            sink.observe(name, value)

    def set(self, name: str, value: int) -> None:
        for sink in self.sinks:
            sink.set(name, value)


COACH = {
    # Decision cycles
    "decisions_total": "coach.decisions_total",
    "decision_ms": "coach.decision_ms",
    "hold_total": "coach.hold_total",
    "objection_total": "coach.objection_total",
    "objection_resolved_total": "coach.objection_resolved_total",
    "fallback_line_total": "coach.fallback_line_total",
    "end_call_total": "coach.end_call_total",
    "queued_advance_applied_total": "coach.queued_advance_applied_total",
    # Sessions and transcript
    "sessions_current": "sessions.current",
    "sessions_reset_total": "sessions.reset_total",
    "transcript_ingested_total": "transcript.ingested_total",
    # Request validation
    "request_rejected_total": "requests.rejected_total",
    # Viewer fan-out
    "fanout_listeners_current": "fanout.listeners_current",
    "fanout_events_total": "fanout.events_total",
    "fanout_dropped_total": "fanout.dropped_total",
    "fanout_evicted_total": "fanout.evicted_total",
    "fanout_listener_removed_total": "fanout.listener_removed_total",
    "fanout_write_timeout_total": "fanout.write_timeout_total",
}
