from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .session import QueuedAdvance, Turn


def _call_id(v: str) -> str:
    # Call ids are trimmed here so every channel and session key agrees.
    call_id = str(v).strip()
    if not call_id:
        raise ValueError("must not be empty")
    return call_id


class DisplayedTurn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timestamp: Optional[int] = Field(default=None, validation_alias=AliasChoices("timestamp", "ts"))
    speaker: Literal["agent", "prospect"]
    text: str = ""
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("text", mode="before")
    @classmethod
    def _null_text(cls, v: Any) -> Any:
        return "" if v is None else v


class TranscriptIngest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(validation_alias=AliasChoices("sessionId", "callId", "session_id", "call_id"))
    timestamp: Optional[int] = Field(default=None, validation_alias=AliasChoices("timestamp", "ts"))
    speaker: Literal["agent", "prospect"]
    text: str
    confidence: Optional[float] = None

    @field_validator("session_id")
    @classmethod
    def _session_id(cls, v: str) -> str:
        return _call_id(v)

    @field_validator("text")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, v: Any) -> Any:
        # Non-numeric confidences are dropped rather than rejected.
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v

    def to_turn(self, *, default_timestamp: int) -> Turn:
        ts = self.timestamp if self.timestamp is not None else int(default_timestamp)
        return Turn(timestamp=int(ts), speaker=self.speaker, text=self.text, confidence=self.confidence)


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(validation_alias=AliasChoices("sessionId", "callId", "session_id", "call_id"))
    displayed_turns: list[DisplayedTurn] = Field(
        validation_alias=AliasChoices("displayedTurns", "displayed_turns")
    )
    now: Optional[int] = None
    action: Optional[Literal["applyQueuedAdvance"]] = None

    @field_validator("session_id")
    @classmethod
    def _session_id(cls, v: str) -> str:
        return _call_id(v)

    def turns(self) -> list[Turn]:
        """Domain turns in arrival order; a missing timestamp inherits the previous one."""
        out: list[Turn] = []
        last_ts = 0
        for t in self.displayed_turns:
            if t.timestamp is not None:
                last_ts = int(t.timestamp)
            out.append(Turn(timestamp=last_ts, speaker=t.speaker, text=t.text, confidence=t.confidence))
        return out


class DecisionPayload(BaseModel):
    """
    What the viewer is told to show next. Serialized camelCase with absent
    fields omitted.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    mode: Literal["key_question", "objection", "end_call"]
    prompt_id: Optional[str] = None
    prompt: str = ""
    preface: Optional[str] = None
    alternatives: Optional[list[str]] = None
    objection_category: Optional[str] = None
    should_end_call: bool = False
    reason: Optional[str] = None
    confidence: Optional[float] = None
    hold_ms_remaining: Optional[int] = None
    delay_ms: Optional[int] = None
    queued_next: Optional[dict[str, Any]] = None
    note: Optional[str] = None

    @staticmethod
    def queued(next_queued: Optional[QueuedAdvance]) -> Optional[dict[str, Any]]:
        return next_queued.to_payload() if next_queued is not None else None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


FanoutType = Literal["transcript", "coach", "system"]


class FanoutEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: FanoutType
    payload: dict[str, Any]

    def dumps(self) -> str:
        return json.dumps(self.model_dump(), separators=(",", ":"), ensure_ascii=False)


def validation_message(exc: Exception) -> str:
    errors = getattr(exc, "errors", None)
    if not callable(errors):
        return str(exc)
    parts: list[str] = []
    for err in errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg", "invalid")))
    return "; ".join(parts) or "invalid request"
