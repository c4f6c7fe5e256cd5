from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from .bounded_queue import BoundedDequeQueue, QueueClosed
from .metrics import COACH


class Transport(Protocol):
    async def send_text(self, text: str) -> None: ...

    async def close(self, *, code: int = 1000, reason: str = "") -> None: ...


@dataclass(frozen=True, slots=True)
class OutboundFrame:
    """One serialized fan-out event waiting in a listener's queue."""

    kind: Literal["transcript", "coach", "system"]
    text: str


WriterExit = Literal["closed", "write_timeout", "send_failed"]


async def listener_writer(
    *,
    transport: Transport,
    outbound_q: BoundedDequeQueue[OutboundFrame],
    metrics: Any,
    write_timeout_ms: int,
) -> WriterExit:
    """
    Drain one listener's queue onto its socket, in enqueue order.

    Returns why it stopped; a failed or timed-out write ends the listener and
    is never retried.
    """
    while True:
        try:
            frame = await outbound_q.get()
        except QueueClosed:
            return "closed"
        try:
            if write_timeout_ms > 0:
                await asyncio.wait_for(transport.send_text(frame.text), timeout=write_timeout_ms / 1000.0)
            else:
                await transport.send_text(frame.text)
        except asyncio.TimeoutError:
            metrics.inc(COACH["fanout_write_timeout_total"], 1)
            return "write_timeout"
        except Exception:
            return "send_failed"
