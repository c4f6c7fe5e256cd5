from __future__ import annotations

import json
import logging
import sys


logger = logging.getLogger("coach")

_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        logger.setLevel(level)
        return
    logging.basicConfig(level=level, stream=sys.stderr, format="[%(asctime)s] %(levelname)s %(message)s")
    logger.setLevel(level)
    _configured = True


def log_event(enabled: bool, *, component: str, event: str, call_id: str = "", **payload: object) -> None:
    """
    Structured one-line JSON event, emitted only when structured logging is on.
    """
    if not enabled:
        return
    base: dict[str, object] = {
        "component": component,
        "event": event,
        "call_id": str(call_id or ""),
    }
    base.update(payload)
    logger.info(json.dumps(base, sort_keys=True, separators=(",", ":"), default=str))
