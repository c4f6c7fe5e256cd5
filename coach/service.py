from __future__ import annotations

import time
from typing import Any, Optional

from .broadcast import CallHub
from .catalog import Catalog, default_catalog, load_catalog
from .clock import Clock, RealClock
from .config import CoachConfig
from .engine import CoachEngine, Classifier, apply_queued_advance
from .logs import log_event, logger
from .metrics import COACH, CompositeMetrics, Metrics
from .protocol import AnalyzeRequest, DecisionPayload, FanoutEvent, TranscriptIngest
from .session import Mode, SessionStore, Turn


class CoachService:
    """
    The one owner of live-call state: session store, decision engine,
    catalog and viewer fan-out.

    Every operation on a call runs under that call's lock, so decision
    cycles and transcript ingestion for one call never interleave.
    """

    def __init__(
        self,
        *,
        config: Optional[CoachConfig] = None,
        catalog: Optional[Catalog] = None,
        clock: Optional[Clock] = None,
        metrics: Any = None,
        classifier: Optional[Classifier] = None,
    ) -> None:
        self.config = config or CoachConfig()
        self.catalog = catalog or self._load_catalog(self.config)
        self.clock = clock or RealClock()
        self.metrics_local = Metrics()
        self.metrics = CompositeMetrics(self.metrics_local, metrics)
        self.engine = CoachEngine(
            self.catalog,
            hold_ms=self.config.hold_ms,
            end_intent_limit=self.config.end_intent_limit,
            objection_limit=self.config.objection_limit,
            confidence=self.config.signal_confidence,
            classifier=classifier,
        )
        self.sessions = SessionStore(first_section=self.catalog.first_section)
        self.hub = CallHub(
            queue_max=self.config.fanout_queue_max,
            write_timeout_ms=self.config.fanout_write_timeout_ms,
            metrics=self.metrics,
            structured_logs=self.config.structured_logging,
        )

    @staticmethod
    def _load_catalog(config: CoachConfig) -> Catalog:
        if not config.catalog_path:
            return default_catalog()
        catalog = load_catalog(config.catalog_path)
        logger.info("loaded content catalog from %s (%d sections)", config.catalog_path, len(catalog.section_order))
        return catalog

    def _log(self, event: str, call_id: str, **payload: object) -> None:
        log_event(self.config.structured_logging, component="coach", event=event, call_id=call_id, **payload)

    def reject(self, route: str, error: str) -> None:
        self.metrics.inc(COACH["request_rejected_total"], 1)
        logger.warning("rejected %s request: %s", route, error)

    async def ingest_transcript(self, req: TranscriptIngest) -> Turn:
        now = self.clock.now_ms()
        turn = req.to_turn(default_timestamp=now)
        async with self.sessions.locked(req.session_id, now_ms=now) as session:
            session.record_turn(turn, max_turns=self.config.transcript_max_turns)
        self.metrics.inc(COACH["transcript_ingested_total"], 1)
        self.metrics.set(COACH["sessions_current"], len(self.sessions))
        await self.hub.broadcast(req.session_id, FanoutEvent(type="transcript", payload=turn.to_payload()))
        return turn

    async def analyze(self, req: AnalyzeRequest) -> DecisionPayload:
        now = req.now if req.now is not None else self.clock.now_ms()
        call_id = req.session_id
        started = time.perf_counter()
        async with self.sessions.locked(call_id, now_ms=now) as session:
            if req.action == "applyQueuedAdvance" and apply_queued_advance(session):
                self.metrics.inc(COACH["queued_advance_applied_total"], 1)
            was_objection = session.mode is Mode.OBJECTION
            decision = self.engine.decide(session, req.turns(), now)
            streaks = (session.objection_streak, session.end_call_intent_streak)
        self._record(call_id, decision, was_objection, streaks, started)
        await self.hub.broadcast(call_id, FanoutEvent(type="coach", payload=decision.to_wire()))
        return decision

    def _record(
        self,
        call_id: str,
        decision: DecisionPayload,
        was_objection: bool,
        streaks: tuple[int, int],
        started: float,
    ) -> None:
        self.metrics.inc(COACH["decisions_total"], 1)
        self.metrics.observe(COACH["decision_ms"], int((time.perf_counter() - started) * 1000))
        self.metrics.set(COACH["sessions_current"], len(self.sessions))
        if decision.note == "holding_before_advance":
            self.metrics.inc(COACH["hold_total"], 1)
        elif decision.mode == Mode.OBJECTION.value:
            self.metrics.inc(COACH["objection_total"], 1)
            if decision.objection_category == "unknown":
                self.metrics.inc(COACH["fallback_line_total"], 1)
        elif decision.should_end_call and decision.note is None:
            self.metrics.inc(COACH["end_call_total"], 1)
            logger.info("call %s flagged to end: %s", call_id, decision.reason)
        elif was_objection and decision.preface:
            self.metrics.inc(COACH["objection_resolved_total"], 1)
        self._log(
            "decision",
            call_id,
            mode=decision.mode,
            prompt_id=decision.prompt_id,
            note=decision.note,
            reason=decision.reason,
            objection_streak=streaks[0],
            end_intent_streak=streaks[1],
        )

    async def reset_session(self, call_id: str) -> bool:
        existed = await self.sessions.reset(call_id)
        if existed:
            self.metrics.inc(COACH["sessions_reset_total"], 1)
            self.metrics.set(COACH["sessions_current"], len(self.sessions))
            self._log("session_reset", call_id)
            await self.hub.broadcast(call_id, FanoutEvent(type="system", payload={"message": "session_reset", "callId": call_id}))
        return existed

    async def aclose(self) -> None:
        await self.hub.close()
