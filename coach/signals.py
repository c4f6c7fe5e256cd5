from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .catalog import Category
from .session import Mode, Turn


class Reaction(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


DEFAULT_CONFIDENCE = 0.55

END_INTENT_PHRASES: tuple[str, ...] = (
    "stop calling",
    "don't call me",
    "do not call me",
    "remove me",
    "take me off",
    "unsubscribe",
    "end the call",
    "hang up",
    "not interested",
    "leave me alone",
)

POSITIVE_PHRASES: tuple[str, ...] = (
    "sounds good",
    "that works",
    "ok",
    "okay",
    "yes",
    "yeah",
    "sure",
    "great",
    "perfect",
)

NEGATIVE_PHRASES: tuple[str, ...] = (
    "no",
    "not really",
    "don't",
    "do not",
    "can't",
    "cannot",
    "won't",
    "will not",
    "too expensive",
    "too much",
    "not interested",
)

UNRESOLVED_PHRASES: tuple[str, ...] = ("still", "no", "not", "doesn't", "does not")

# Checked in Category declaration order; first hit wins.
OBJECTION_KEYWORDS: dict[Category, tuple[str, ...]] = {
    Category.PRICE: ("price", "expensive", "too much", "cost", "afford"),
    Category.TIMING: ("not now", "later", "timing", "wait", "next month", "next year"),
    Category.SPOUSE: ("spouse", "husband", "wife", "partner", "talk to", "ask my"),
    Category.TRUST: ("scam", "trust", "not sure", "skeptical", "legit", "legitimate"),
    Category.ALREADY_WORKING_WITH_AGENT: ("already have an agent", "my agent", "realtor", "broker"),
    Category.NOT_INTERESTED: ("not interested", "no thanks", "stop", "leave me alone"),
}


@dataclass(frozen=True, slots=True)
class Signal:
    reaction: Reaction = Reaction.NEUTRAL
    objection_category: Optional[Category] = None
    end_intent: bool = False
    objection_resolved: bool = False
    confidence: float = DEFAULT_CONFIDENCE
    # Debug only; never part of a decision payload.
    last_prospect_text: str = ""


def normalize(text: Optional[str]) -> str:
    return str(text or "").strip().lower()


def includes_any(text: str, phrases: Sequence[str]) -> bool:
    return any(p in text for p in phrases)


def last_prospect_turn(turns: Sequence[Turn]) -> Optional[Turn]:
    """Greatest timestamp among prospect turns; later arrival wins ties."""
    best: Optional[Turn] = None
    for turn in turns or ():
        if turn.speaker != "prospect":
            continue
        if best is None or turn.timestamp >= best.timestamp:
            best = turn
    return best


def detect_objection_category(text: str) -> Optional[Category]:
    for category in Category:
        if includes_any(text, OBJECTION_KEYWORDS.get(category, ())):
            return category
    return None


def detect_reaction(text: str, *, end_intent: bool) -> Reaction:
    reaction = Reaction.NEUTRAL
    if text:
        if includes_any(text, POSITIVE_PHRASES):
            reaction = Reaction.POSITIVE
        if includes_any(text, NEGATIVE_PHRASES):
            reaction = Reaction.NEGATIVE
    # End intent is a hard stop regardless of any softer wording around it.
    if end_intent:
        reaction = Reaction.NEGATIVE
    return reaction


def detect_objection_resolved(text: str, mode: Mode) -> bool:
    if mode is not Mode.OBJECTION or not text:
        return False
    if includes_any(text, POSITIVE_PHRASES):
        return True
    if includes_any(text, UNRESOLVED_PHRASES):
        return False
    # Unknown counts as not resolved.
    return False


def classify(
    displayed_turns: Sequence[Turn],
    current_prompt_id: Optional[str],
    mode: Mode,
    *,
    confidence: float = DEFAULT_CONFIDENCE,
) -> Signal:
    """
    Lexical read of the prospect's last displayed utterance.

    Only what the viewer confirmed as displayed is eligible. With no prospect
    utterance every field keeps its neutral default. `current_prompt_id` is
    part of the contract for richer classifiers and unused by this one.
    """
    turn = last_prospect_turn(displayed_turns)
    text = normalize(turn.text if turn is not None else "")
    if not text:
        return Signal(confidence=confidence)

    end_intent = includes_any(text, END_INTENT_PHRASES)
    return Signal(
        reaction=detect_reaction(text, end_intent=end_intent),
        objection_category=detect_objection_category(text),
        end_intent=end_intent,
        objection_resolved=detect_objection_resolved(text, mode),
        confidence=confidence,
        last_prospect_text=text,
    )
