from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Literal, Optional


Speaker = Literal["agent", "prospect"]


class Mode(str, Enum):
    KEY_QUESTION = "key_question"
    OBJECTION = "objection"
    END_CALL = "end_call"


@dataclass(frozen=True, slots=True)
class Turn:
    timestamp: int
    speaker: Speaker
    text: str
    confidence: Optional[float] = None

    def to_payload(self) -> dict[str, object]:
        out: dict[str, object] = {"timestamp": self.timestamp, "speaker": self.speaker, "text": self.text}
        if self.confidence is not None:
            out["confidence"] = self.confidence
        return out


@dataclass(frozen=True, slots=True)
class QueuedAdvance:
    section: str
    key_index: int
    id: Optional[str]
    text: Optional[str]

    def to_payload(self) -> dict[str, object]:
        return {"section": self.section, "keyIndex": self.key_index, "id": self.id, "text": self.text}


@dataclass(slots=True)
class Session:
    call_id: str
    section: str
    key_index: int = 0
    mode: Mode = Mode.KEY_QUESTION

    objection_streak: int = 0
    end_call_intent_streak: int = 0
    end_intent_grace: bool = False

    current_prompt_id: Optional[str] = None
    pending_advance_at: Optional[int] = None
    next_queued: Optional[QueuedAdvance] = None
    end_reason: Optional[str] = None

    transcript: list[Turn] = field(default_factory=list)
    displayed_turns: list[Turn] = field(default_factory=list)
    created_at: int = 0
    last_prompt_at: int = 0
    decisions: int = 0

    @property
    def holding(self) -> bool:
        return self.pending_advance_at is not None

    def record_turn(self, turn: Turn, *, max_turns: int) -> None:
        self.transcript.append(turn)
        overflow = len(self.transcript) - max(1, int(max_turns))
        if overflow > 0:
            del self.transcript[:overflow]


class SessionStore:
    """
    Keyed in-memory registry of live calls.

    Sessions are created on first reference. Every read-modify-write of a
    session must go through `locked()`, which serializes access per call id;
    different calls never contend.

    Locks outlive reset sessions: a waiter queued on the old lock and a new
    caller must still exclude each other.
    """

    def __init__(self, *, first_section: str) -> None:
        self._first_section = first_section
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def get(self, call_id: str, *, now_ms: int = 0) -> Session:
        session = self._sessions.get(call_id)
        if session is None:
            session = Session(
                call_id=call_id,
                section=self._first_section,
                created_at=int(now_ms),
                last_prompt_at=int(now_ms),
            )
            self._sessions[call_id] = session
        return session

    def peek(self, call_id: str) -> Optional[Session]:
        return self._sessions.get(call_id)

    def _lock_for(self, call_id: str) -> asyncio.Lock:
        lock = self._locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        return lock

    @contextlib.asynccontextmanager
    async def locked(self, call_id: str, *, now_ms: int = 0) -> AsyncIterator[Session]:
        async with self._lock_for(call_id):
            yield self.get(call_id, now_ms=now_ms)

    async def reset(self, call_id: str) -> bool:
        async with self._lock_for(call_id):
            return self._sessions.pop(call_id, None) is not None
