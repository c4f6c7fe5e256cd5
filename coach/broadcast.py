from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Optional

from .bounded_queue import BoundedDequeQueue
from .logs import log_event
from .metrics import COACH, Metrics
from .protocol import FanoutEvent
from .transport_ws import OutboundFrame, Transport, listener_writer


DEFAULT_CHANNEL = "default"

_listener_ids = itertools.count(1)


def _evict_transcript(frame: OutboundFrame) -> bool:
    return frame.kind == "transcript"


@dataclass(eq=False)
class Listener:
    call_id: str
    transport: Transport
    outbound_q: BoundedDequeQueue[OutboundFrame]
    listener_id: int = field(default_factory=lambda: next(_listener_ids))
    task: Optional[asyncio.Task[Any]] = None
    detached: bool = False


class CallHub:
    """
    Per-call fan-out of transcript/coach/system events to attached viewers.

    Delivery is fire-and-forget and at most once: each listener has its own
    bounded queue and writer task, so a slow or broken viewer only loses its
    own events. A full queue gives up its oldest transcript event first; a
    failed write removes the listener.
    """

    def __init__(
        self,
        *,
        queue_max: int = 64,
        write_timeout_ms: int = 1000,
        metrics: Any = None,
        structured_logs: bool = False,
    ) -> None:
        self._queue_max = max(1, int(queue_max))
        self._write_timeout_ms = int(write_timeout_ms)
        self._metrics = metrics if metrics is not None else Metrics()
        self._structured_logs = structured_logs
        self._channels: dict[str, set[Listener]] = {}

    def listener_count(self, call_id: Optional[str] = None) -> int:
        if call_id is not None:
            return len(self._channels.get(call_id, ()))
        return sum(len(s) for s in self._channels.values())

    def _update_gauge(self) -> None:
        self._metrics.set(COACH["fanout_listeners_current"], self.listener_count())

    async def attach(self, call_id: Optional[str], transport: Transport) -> Listener:
        channel = str(call_id or "").strip() or DEFAULT_CHANNEL
        listener = Listener(
            call_id=channel,
            transport=transport,
            outbound_q=BoundedDequeQueue(maxsize=self._queue_max),
        )
        self._channels.setdefault(channel, set()).add(listener)
        self._update_gauge()

        hello = FanoutEvent(type="system", payload={"message": "connected", "callId": channel})
        await listener.outbound_q.put(OutboundFrame(kind="system", text=hello.dumps()))
        listener.task = asyncio.create_task(self._drain(listener))
        log_event(
            self._structured_logs,
            component="fanout",
            event="listener_attached",
            call_id=channel,
            listener_id=listener.listener_id,
        )
        return listener

    async def _drain(self, listener: Listener) -> None:
        reason = await listener_writer(
            transport=listener.transport,
            outbound_q=listener.outbound_q,
            metrics=self._metrics,
            write_timeout_ms=self._write_timeout_ms,
        )
        if reason != "closed":
            await self.detach(listener, reason=reason)
            await listener.transport.close(code=1011, reason=reason)

    async def detach(self, listener: Listener, *, reason: str = "disconnect") -> None:
        if listener.detached:
            return
        listener.detached = True
        members = self._channels.get(listener.call_id)
        if members is not None:
            members.discard(listener)
            if not members:
                self._channels.pop(listener.call_id, None)
        await listener.outbound_q.close()
        self._update_gauge()
        if reason not in {"disconnect", "shutdown"}:
            self._metrics.inc(COACH["fanout_listener_removed_total"], 1)
        log_event(
            self._structured_logs,
            component="fanout",
            event="listener_detached",
            call_id=listener.call_id,
            listener_id=listener.listener_id,
            reason=reason,
        )

    async def broadcast(self, call_id: str, event: FanoutEvent) -> int:
        """Enqueue `event` for every listener on the call; returns how many accepted it."""
        listeners = list(self._channels.get(call_id, ()))
        if not listeners:
            return 0
        frame = OutboundFrame(kind=event.type, text=event.dumps())
        accepted = 0
        for listener in listeners:
            before = listener.outbound_q.evictions
            ok = await listener.outbound_q.put(frame, evict=_evict_transcript)
            if listener.outbound_q.evictions > before:
                self._metrics.inc(COACH["fanout_evicted_total"], 1)
            if ok:
                accepted += 1
            else:
                self._metrics.inc(COACH["fanout_dropped_total"], 1)
        self._metrics.inc(COACH["fanout_events_total"], accepted)
        return accepted

    async def close(self) -> None:
        listeners = [x for members in self._channels.values() for x in members]
        for listener in listeners:
            await self.detach(listener, reason="shutdown")
        tasks = [x.task for x in listeners if x.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
