from __future__ import annotations

from typing import Callable, Optional, Sequence

from .catalog import Catalog, Category, KeyQuestion
from .protocol import DecisionPayload
from .session import Mode, QueuedAdvance, Session, Turn
from .signals import DEFAULT_CONFIDENCE, Reaction, Signal, classify


END_CALL_PROMPT_ID = "END_CALL"
REASON_END_INTENT = "prospect_end_intent_twice"
REASON_OBJECTIONS = "three_objections_failed"
UNKNOWN_CATEGORY = "unknown"

Classifier = Callable[[Sequence[Turn], Optional[str], Mode], Signal]


def apply_queued_advance(session: Session) -> bool:
    """
    Commit the question queued by the last positive/neutral cycle.

    No-op (returns False) when nothing is queued or the session is not on a
    key question.
    """
    queued = session.next_queued
    if queued is None or session.mode is not Mode.KEY_QUESTION:
        return False
    session.section = queued.section
    session.key_index = queued.key_index
    session.current_prompt_id = queued.id or session.current_prompt_id
    session.next_queued = None
    return True


def update_end_intent_tracking(session: Session, signal: Signal) -> None:
    if signal.end_intent:
        session.end_call_intent_streak += 1
        # One objection cycle may sit between two end intents.
        session.end_intent_grace = True
        return
    if session.end_intent_grace and session.mode is Mode.OBJECTION:
        session.end_intent_grace = False
        return
    session.end_call_intent_streak = 0
    session.end_intent_grace = False


class CoachEngine:
    """
    Picks the next prompt for one call from the prospect's last displayed
    utterance and the session's script position and streaks.

    Priority order per cycle: terminal guard, hold, end-intent tracking,
    escalation, objection resolution, negative branch, positive/neutral branch.
    The caller must serialize cycles per session.
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        hold_ms: int = 2000,
        end_intent_limit: int = 2,
        objection_limit: int = 3,
        confidence: float = DEFAULT_CONFIDENCE,
        classifier: Optional[Classifier] = None,
    ) -> None:
        self.catalog = catalog
        self.hold_ms = max(0, int(hold_ms))
        self.end_intent_limit = max(1, int(end_intent_limit))
        self.objection_limit = max(1, int(objection_limit))
        self._confidence = float(confidence)
        self._classifier = classifier

    def classify(self, turns: Sequence[Turn], session: Session) -> Signal:
        if self._classifier is not None:
            return self._classifier(turns, session.current_prompt_id, session.mode)
        return classify(turns, session.current_prompt_id, session.mode, confidence=self._confidence)

    # Script navigation

    def current_question(self, session: Session) -> Optional[KeyQuestion]:
        return self.catalog.question_at(session.section, session.key_index)

    def next_question(self, session: Session) -> QueuedAdvance:
        items = self.catalog.questions(session.section)
        nxt = session.key_index + 1
        if nxt < len(items):
            return QueuedAdvance(section=session.section, key_index=nxt, id=items[nxt].id, text=items[nxt].text)

        for section in self.catalog.sections_after(session.section):
            later = self.catalog.questions(section)
            if later:
                return QueuedAdvance(section=section, key_index=0, id=later[0].id, text=later[0].text)

        # Script exhausted: stay on the last question.
        current = self.current_question(session)
        return QueuedAdvance(
            section=session.section,
            key_index=session.key_index,
            id=current.id if current is not None else session.current_prompt_id,
            text=current.text if current is not None else None,
        )

    def _start_position(self, session: Session) -> Optional[tuple[str, int, KeyQuestion]]:
        current = self.current_question(session)
        if current is not None:
            return session.section, session.key_index, current
        candidates = (session.section, *self.catalog.sections_after(session.section), *self.catalog.section_order)
        for section in candidates:
            items = self.catalog.questions(section)
            if items:
                return section, 0, items[0]
        return None

    # Escalation

    def escalation_reason(self, session: Session) -> Optional[str]:
        if session.end_call_intent_streak >= self.end_intent_limit:
            return REASON_END_INTENT
        if session.objection_streak >= self.objection_limit:
            return REASON_OBJECTIONS
        return None

    def _end_call(self, session: Session, reason: Optional[str], now: int, confidence: Optional[float]) -> DecisionPayload:
        session.mode = Mode.END_CALL
        session.end_reason = reason
        session.pending_advance_at = None
        session.next_queued = None
        session.last_prompt_at = now
        return self._end_call_payload(session, confidence=confidence)

    def _end_call_payload(self, session: Session, *, confidence: Optional[float], note: Optional[str] = None) -> DecisionPayload:
        return DecisionPayload(
            mode=Mode.END_CALL.value,
            prompt_id=END_CALL_PROMPT_ID,
            prompt=self.catalog.end_call_phrase,
            should_end_call=True,
            reason=session.end_reason,
            confidence=confidence,
            note=note,
        )

    # Objection lines

    def _objection_payload(self, session: Session, category: Optional[Category], confidence: float) -> DecisionPayload:
        picked = category if category is not None else Category.NOT_INTERESTED
        lines = self.catalog.rebuttals(picked)
        if lines:
            return DecisionPayload(
                mode=Mode.OBJECTION.value,
                prompt_id=f"OBJ_{picked.value}_{session.objection_streak}",
                objection_category=picked.value,
                prompt=lines[0],
                alternatives=list(lines[1:3]),
                should_end_call=False,
                confidence=confidence,
            )
        return DecisionPayload(
            mode=Mode.OBJECTION.value,
            prompt_id=f"OBJ_{UNKNOWN_CATEGORY}_{session.objection_streak}",
            objection_category=UNKNOWN_CATEGORY,
            prompt=self.catalog.objection_fallback,
            alternatives=[],
            should_end_call=False,
            confidence=confidence,
        )

    # Decision cycle

    def decide(self, session: Session, displayed_turns: Sequence[Turn], now: int) -> DecisionPayload:
        if session.mode is Mode.END_CALL:
            return self._end_call_payload(session, confidence=None, note="call_already_ended")

        turns = list(displayed_turns or ())
        session.displayed_turns = turns
        session.decisions += 1

        if session.pending_advance_at is not None and now < session.pending_advance_at:
            current = self.current_question(session)
            return DecisionPayload(
                mode=session.mode.value,
                prompt_id=session.current_prompt_id,
                prompt=current.text if current is not None else "",
                hold_ms_remaining=int(session.pending_advance_at - now),
                should_end_call=False,
                note="holding_before_advance",
            )
        session.pending_advance_at = None

        signal = self.classify(turns, session)

        update_end_intent_tracking(session, signal)
        reason = self.escalation_reason(session)
        if reason is not None:
            return self._end_call(session, reason, now, signal.confidence)

        if session.mode is Mode.OBJECTION and signal.objection_resolved:
            session.objection_streak = 0
            session.mode = Mode.KEY_QUESTION
            # Back to the same key question; the script does not advance here.
            current = self.current_question(session)
            session.last_prompt_at = now
            return DecisionPayload(
                mode=Mode.KEY_QUESTION.value,
                prompt_id=session.current_prompt_id,
                prompt=current.text if current is not None else "",
                preface=self.catalog.continue_phrase,
                should_end_call=False,
                confidence=signal.confidence,
                note="objection_resolved_return_to_same_key_question",
            )

        if signal.reaction is Reaction.NEGATIVE:
            session.mode = Mode.OBJECTION
            # An advance queued before the objection must not move the script.
            session.next_queued = None
            session.objection_streak += 1
            reason = self.escalation_reason(session)
            if reason is not None:
                return self._end_call(session, reason, now, signal.confidence)
            session.last_prompt_at = now
            return self._objection_payload(session, signal.objection_category, signal.confidence)

        session.objection_streak = 0
        session.mode = Mode.KEY_QUESTION

        current = self.current_question(session)
        if session.current_prompt_id is None or current is None:
            start = self._start_position(session)
            if start is not None:
                session.section, session.key_index, first = start
                session.current_prompt_id = first.id
                session.last_prompt_at = now
                return DecisionPayload(
                    mode=Mode.KEY_QUESTION.value,
                    prompt_id=first.id,
                    prompt=first.text,
                    should_end_call=False,
                    confidence=signal.confidence,
                    note="start_or_recover_key_question",
                )

        # Keep the current question up for the hold window, then advance.
        nxt = self.next_question(session)
        session.next_queued = nxt
        session.pending_advance_at = now + self.hold_ms
        return DecisionPayload(
            mode=Mode.KEY_QUESTION.value,
            prompt_id=session.current_prompt_id,
            prompt=current.text if current is not None else "",
            should_end_call=False,
            confidence=signal.confidence,
            delay_ms=self.hold_ms,
            queued_next=DecisionPayload.queued(nxt),
            note="holding_then_advance",
        )
