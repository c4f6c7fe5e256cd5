from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import os
import sys
from typing import Any, Iterable

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from coach.clock import FakeClock
from coach.protocol import AnalyzeRequest, TranscriptIngest
from coach.service import CoachService


# Each step either ingests a transcript turn or runs a decision cycle over
# everything ingested so far. `advance_ms` moves the replay clock first.
BUILTIN_STEPS: list[dict[str, Any]] = [
    {"kind": "analyze"},
    {"kind": "turn", "speaker": "prospect", "text": "Sure, we want to move before summer.", "advance_ms": 500},
    {"kind": "analyze"},
    {"kind": "analyze", "advance_ms": 2500, "action": "applyQueuedAdvance"},
    {"kind": "turn", "speaker": "prospect", "text": "Honestly it all sounds too expensive.", "advance_ms": 2200},
    {"kind": "analyze"},
    {"kind": "turn", "speaker": "prospect", "text": "Okay, that works.", "advance_ms": 900},
    {"kind": "analyze"},
    {"kind": "turn", "speaker": "prospect", "text": "Stop calling me, not interested.", "advance_ms": 700},
    {"kind": "analyze"},
    {"kind": "turn", "speaker": "prospect", "text": "I said stop calling me.", "advance_ms": 700},
    {"kind": "analyze"},
]


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _digest(decisions: Iterable[dict[str, Any]]) -> str:
    blob = "|".join(json.dumps(d, separators=(",", ":"), sort_keys=True) for d in decisions).encode("utf-8")
    return _sha256_hex(blob)


def _load_jsonl(path: str) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            out.append(json.loads(line))
    return out


async def replay(steps: list[dict[str, Any]], *, call_id: str = "replay") -> list[dict[str, Any]]:
    clock = FakeClock(start_ms=1_000_000)
    service = CoachService(clock=clock)
    displayed: list[dict[str, Any]] = []
    decisions: list[dict[str, Any]] = []
    try:
        for step in steps:
            clock.advance(int(step.get("advance_ms", 0)))
            kind = step.get("kind")
            if kind == "turn":
                turn = await service.ingest_transcript(
                    TranscriptIngest.model_validate(
                        {"sessionId": call_id, "speaker": step.get("speaker"), "text": step.get("text")}
                    )
                )
                displayed.append(turn.to_payload())
            elif kind == "analyze":
                req = AnalyzeRequest.model_validate(
                    {
                        "sessionId": call_id,
                        "displayedTurns": step.get("displayedTurns", displayed),
                        "action": step.get("action"),
                        "now": clock.now_ms(),
                    }
                )
                decisions.append((await service.analyze(req)).to_wire())
            else:
                raise ValueError(f"unknown replay step kind: {kind!r}")
    finally:
        await service.aclose()
    return decisions


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay a scripted call through the coach engine.")
    ap.add_argument("--steps", type=str, default="", help="path to steps JSONL (default: built-in call)")
    ap.add_argument("--call-id", type=str, default="replay")
    ap.add_argument("--digest-only", action="store_true", help="print only the decision digest")
    args = ap.parse_args()

    steps = _load_jsonl(args.steps) if args.steps else BUILTIN_STEPS
    d1 = asyncio.run(replay(steps, call_id=args.call_id))
    d2 = asyncio.run(replay(steps, call_id=args.call_id))

    if not args.digest_only:
        for i, decision in enumerate(d1, start=1):
            print(f"{i:>3} {json.dumps(decision, ensure_ascii=False, sort_keys=True)}")
    print(f"digest={_digest(d1)}")
    if _digest(d1) != _digest(d2):
        print("replay_digest_mismatch", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
