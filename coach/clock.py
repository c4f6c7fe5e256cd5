from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...


@dataclass(frozen=True, slots=True)
class RealClock(Clock):
    # Wall-clock epoch millis: callers may send their own `now` in the same unit.
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class FakeClock(Clock):
    """
    Deterministic clock for tests.

    now_ms() only moves when advance() is called.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError("FakeClock.advance(ms): ms must be >= 0")
        self._now_ms += int(ms)
        return self._now_ms
