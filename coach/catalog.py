from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional


class CatalogError(ValueError):
    pass


class Category(str, Enum):
    # Declaration order is the detection priority order.
    PRICE = "price"
    TIMING = "timing"
    SPOUSE = "spouse"
    TRUST = "trust"
    ALREADY_WORKING_WITH_AGENT = "already_working_with_agent"
    NOT_INTERESTED = "not_interested"


@dataclass(frozen=True, slots=True)
class KeyQuestion:
    id: str
    text: str


@dataclass(frozen=True, slots=True)
class Catalog:
    """
    Read-only content shared by every session: the scripted key questions
    (grouped into sections walked in `section_order`) and the objection
    rebuttal banks (first line is the primary move, the rest are alternatives).
    """

    sections: Mapping[str, tuple[KeyQuestion, ...]]
    section_order: tuple[str, ...]
    objections: Mapping[Category, tuple[str, ...]]
    end_call_phrase: str
    continue_phrase: str
    objection_fallback: str

    def questions(self, section: str) -> tuple[KeyQuestion, ...]:
        return self.sections.get(section, ())

    def question_at(self, section: str, key_index: int) -> Optional[KeyQuestion]:
        items = self.questions(section)
        if 0 <= key_index < len(items):
            return items[key_index]
        return None

    def rebuttals(self, category: Category) -> tuple[str, ...]:
        return self.objections.get(category, ())

    @property
    def first_section(self) -> str:
        return self.section_order[0]

    def sections_after(self, section: str) -> tuple[str, ...]:
        """Sections that follow `section` in traversal order; empty if unknown or last."""
        if section not in self.section_order:
            return ()
        return self.section_order[self.section_order.index(section) + 1 :]


DEFAULT_KEY_QUESTIONS: dict[str, list[dict[str, str]]] = {
    "S1": [
        {"id": "S1Q1", "text": "Quickly—what triggered the move right now?"},
        {"id": "S1Q2", "text": "What would make this conversation a win for you?"},
        {"id": "S1Q3", "text": "When do you ideally want to be in the new place?"},
        {"id": "S1Q4", "text": "What’s not working with your current situation?"},
    ],
    "S2": [
        {"id": "S2Q1", "text": "What price range feels comfortable—not optimistic?"},
        {"id": "S2Q2", "text": "Cash or financing—are you already pre-approved?"},
        {"id": "S2Q3", "text": "Top 3 must-haves? And top 3 dealbreakers?"},
        {"id": "S2Q4", "text": "If we found the right option, what could still stop you from moving forward?"},
    ],
    "S3": [
        {"id": "S3Q1", "text": "If we schedule a showing, what day/time is easiest this week?"},
        {"id": "S3Q2", "text": "Who else needs to be involved in the decision?"},
        {"id": "S3Q3", "text": "What would you need to see to feel confident saying yes after the showing?"},
    ],
}

DEFAULT_SECTION_ORDER: list[str] = ["S1", "S2", "S3"]

DEFAULT_OBJECTION_BANK: dict[str, list[str]] = {
    "price": [
        "Totally fair — compared to what?",
        "If we keep the price, what would need to improve to make it a yes?",
        "If we keep the features, what price would feel right?",
    ],
    "timing": [
        "What’s driving the timing — what changes if you wait?",
        "If it were a perfect fit, what would be the earliest you could move?",
        "What would need to happen for timing to feel right?",
    ],
    "spouse": [
        "Makes sense. What matters most to them?",
        "Want a quick 3-way call so we don’t play telephone?",
        "If they said yes today, would you be ready to move forward?",
    ],
    "trust": [
        "Fair question. What would help you feel confident this is the right move?",
        "What’s your biggest concern — price, process, or risk?",
        "Would a written breakdown of options + comps help?",
    ],
    "already_working_with_agent": [
        "Got it. Are you under an exclusive agreement right now?",
        "If not exclusive—what would you want differently from the experience you’re having?",
        "Would it be useful if I shared a few off-market/alternative options to compare?",
    ],
    "not_interested": [
        "Understood. Is it a 'not now' or a 'not this'?",
        "What specifically makes it a no—price, timing, or fit?",
        "If one thing changed, what would make you reconsider?",
    ],
}

END_CALL_PHRASE = (
    "I hear you. Let’s not force it — I’ll send a short recap, and if timing changes, you can reach back out."
)
CONTINUE_PHRASE = "Got it. Does that address it enough for us to continue?"
OBJECTION_FALLBACK = "Understood. What specifically is making this a no right now—price, timing, or fit?"


def _parse_category(raw: Any) -> Category:
    try:
        return Category(str(raw).strip())
    except ValueError:
        raise CatalogError(f"unknown objection category: {raw!r}") from None


def _parse_questions(section: str, raw: Any, seen_ids: set[str]) -> tuple[KeyQuestion, ...]:
    if not isinstance(raw, list):
        raise CatalogError(f"section {section!r} must be a list of questions")
    out: list[KeyQuestion] = []
    for item in raw:
        if not isinstance(item, dict):
            raise CatalogError(f"section {section!r} has a non-object question")
        qid = str(item.get("id") or "").strip()
        text = str(item.get("text") or "").strip()
        if not qid or not text:
            raise CatalogError(f"section {section!r} has a question without id/text")
        if qid in seen_ids:
            raise CatalogError(f"duplicate key question id: {qid}")
        seen_ids.add(qid)
        out.append(KeyQuestion(id=qid, text=text))
    return tuple(out)


def build_catalog(raw: Mapping[str, Any]) -> Catalog:
    """
    Validate a raw catalog document and freeze it.

    Recognized keys: sections, section_order, objections, end_call_phrase,
    continue_phrase, objection_fallback. Phrases default to the built-in ones.
    """
    raw_sections = raw.get("sections")
    if not isinstance(raw_sections, dict) or not raw_sections:
        raise CatalogError("catalog needs a non-empty 'sections' object")

    seen_ids: set[str] = set()
    sections = {
        str(name): _parse_questions(str(name), items, seen_ids) for name, items in raw_sections.items()
    }

    raw_order = raw.get("section_order")
    if raw_order is None:
        order = tuple(sections.keys())
    elif isinstance(raw_order, list):
        order = tuple(str(s) for s in raw_order)
    else:
        raise CatalogError("'section_order' must be a list")
    if not order:
        raise CatalogError("'section_order' must not be empty")
    unknown = [s for s in order if s not in sections]
    if unknown:
        raise CatalogError(f"section_order references unknown sections: {', '.join(unknown)}")
    if len(set(order)) != len(order):
        raise CatalogError("section_order lists a section twice")
    if not any(sections[s] for s in order):
        raise CatalogError("catalog has no key questions")

    raw_objections = raw.get("objections") or {}
    if not isinstance(raw_objections, dict):
        raise CatalogError("'objections' must be an object")
    objections: dict[Category, tuple[str, ...]] = {}
    for key, lines in raw_objections.items():
        category = _parse_category(key)
        if not isinstance(lines, list):
            raise CatalogError(f"objection bank {category.value!r} must be a list")
        objections[category] = tuple(str(line).strip() for line in lines if str(line).strip())

    return Catalog(
        sections=MappingProxyType(sections),
        section_order=order,
        objections=MappingProxyType(objections),
        end_call_phrase=str(raw.get("end_call_phrase") or END_CALL_PHRASE),
        continue_phrase=str(raw.get("continue_phrase") or CONTINUE_PHRASE),
        objection_fallback=str(raw.get("objection_fallback") or OBJECTION_FALLBACK),
    )


def default_catalog() -> Catalog:
    return build_catalog(
        {
            "sections": DEFAULT_KEY_QUESTIONS,
            "section_order": DEFAULT_SECTION_ORDER,
            "objections": DEFAULT_OBJECTION_BANK,
        }
    )


def load_catalog(path: str | Path) -> Catalog:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise CatalogError(f"cannot read catalog file {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"catalog file {p} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise CatalogError(f"catalog file {p} must hold a JSON object")
    return build_catalog(raw)
