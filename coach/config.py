from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _getenv_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _getenv_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True, slots=True)
class CoachConfig:
    service_name: str = "real-estate-live-coach-backend"

    # Decision engine
    hold_ms: int = 2000
    end_intent_limit: int = 2
    objection_limit: int = 3
    signal_confidence: float = 0.55

    # Content catalog (empty path uses the built-in script)
    catalog_path: str = ""

    # Session bookkeeping
    transcript_max_turns: int = 500

    # Viewer fan-out
    fanout_queue_max: int = 64
    fanout_write_timeout_ms: int = 1000

    # Logging
    log_level: str = "INFO"
    structured_logging: bool = False

    # Browser viewers calling the HTTP routes
    cors_origins: tuple[str, ...] = ("*",)

    # Telephony glue (TwiML stream URL)
    public_host: str = "localhost:8080"
    port: int = 8080

    @staticmethod
    def from_env() -> "CoachConfig":
        log_level = _getenv_str("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in _LOG_LEVELS:
            log_level = "INFO"
        port = _getenv_int("PORT", 8080)
        public_host = _getenv_str("PUBLIC_HOST", f"localhost:{port}").strip().strip("/")
        if public_host.startswith("https://") or public_host.startswith("http://"):
            public_host = public_host.split("://", 1)[1]

        cors_origins = tuple(o.strip().rstrip("/") for o in _getenv_str("CORS_ORIGINS", "*").split(",") if o.strip())

        return CoachConfig(
            service_name=_getenv_str("SERVICE_NAME", "real-estate-live-coach-backend"),
            hold_ms=max(0, _getenv_int("COACH_HOLD_MS", 2000)),
            end_intent_limit=max(1, _getenv_int("COACH_END_INTENT_LIMIT", 2)),
            objection_limit=max(1, _getenv_int("COACH_OBJECTION_LIMIT", 3)),
            signal_confidence=max(0.0, min(1.0, _getenv_float("COACH_SIGNAL_CONFIDENCE", 0.55))),
            catalog_path=_getenv_str("COACH_CATALOG_PATH", ""),
            transcript_max_turns=max(1, _getenv_int("COACH_TRANSCRIPT_MAX_TURNS", 500)),
            fanout_queue_max=max(1, _getenv_int("FANOUT_QUEUE_MAX", 64)),
            fanout_write_timeout_ms=_getenv_int("FANOUT_WRITE_TIMEOUT_MS", 1000),
            log_level=log_level,
            structured_logging=_getenv_bool("COACH_STRUCTURED_LOGGING", False),
            cors_origins=cors_origins or ("*",),
            public_host=public_host,
            port=port,
        )
