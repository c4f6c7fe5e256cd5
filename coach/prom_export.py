from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable


# Decision cycles are sub-millisecond to a few ms; fan-out writes can be slower.
_DEFAULT_MS_BUCKETS = (1, 2, 5, 10, 25, 50, 100, 250, 500, 1000)


def _prom_name(name: str) -> str:
    # Prometheus does not allow '.' in metric names.
    return (name or "").replace(".", "_")


@dataclass(slots=True)
class _BucketHistogram:
    buckets: tuple[int, ...]
    counts: list[int] = field(default_factory=list)
    sum: int = 0
    count: int = 0

    def __post_init__(self) -> None:
        if not self.counts:
            self.counts = [0] * (len(self.buckets) + 1)

    def observe(self, v: int) -> None:
        x = int(v)
        self.sum += x
        self.count += 1
        for i, b in enumerate(self.buckets):
            if x <= b:
                self.counts[i] += 1
                return
        self.counts[-1] += 1

    def iter_cumulative(self) -> Iterable[tuple[str, int]]:
        running = 0
        for b, c in zip(self.buckets, self.counts):
            running += c
            yield str(b), running
        yield "+Inf", running + self.counts[-1]


class PromExporter:
    """
    Process-wide Prometheus text exporter (counters, gauges, bucketed
    histograms). Raw samples are not kept.
    """

    def __init__(self, *, ms_buckets: tuple[int, ...] = _DEFAULT_MS_BUCKETS, prefix: str = "") -> None:
        self._lock = threading.Lock()
        self._prefix = _prom_name(prefix)
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, int] = {}
        self._hists: dict[str, _BucketHistogram] = {}
        self._ms_buckets = tuple(sorted(int(b) for b in ms_buckets))

    def _key(self, name: str) -> str:
        key = _prom_name(name)
        return f"{self._prefix}_{key}" if self._prefix else key

    def inc(self, name: str, value: int = 1) -> None:
        key = self._key(name)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(value)

    def set(self, name: str, value: int) -> None:
        key = self._key(name)
        with self._lock:
            self._gauges[key] = int(value)

    def observe(self, name: str, value: int) -> None:
        key = self._key(name)
        with self._lock:
            hist = self._hists.setdefault(key, _BucketHistogram(buckets=self._ms_buckets))
            hist.observe(value)

    def render(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name in sorted(self._counters):
                lines += [f"# TYPE {name} counter", f"{name} {self._counters[name]}"]
            for name in sorted(self._gauges):
                lines += [f"# TYPE {name} gauge", f"{name} {self._gauges[name]}"]
            for name in sorted(self._hists):
                hist = self._hists[name]
                lines.append(f"# TYPE {name} histogram")
                lines += [f'{name}_bucket{{le="{le}"}} {c}' for le, c in hist.iter_cumulative()]
                lines += [f"{name}_sum {hist.sum}", f"{name}_count {hist.count}"]
        return "\n".join(lines) + "\n"


GLOBAL_PROM = PromExporter()
