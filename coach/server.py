from __future__ import annotations

import contextlib
import html
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

from fastapi import FastAPI, Form, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from .config import CoachConfig
from .logs import configure_logging, logger
from .prom_export import GLOBAL_PROM
from .protocol import AnalyzeRequest, TranscriptIngest, validation_message
from .service import CoachService


class StarletteTransport:
    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws

    async def send_text(self, text: str) -> None:
        await self._ws.send_text(text)

    async def close(self, *, code: int = 1000, reason: str = "") -> None:
        try:
            await self._ws.close(code=code, reason=reason)
        except Exception:
            return


def _bad_request(service: CoachService, route: str, error: str) -> JSONResponse:
    service.reject(route, error)
    return JSONResponse({"ok": False, "error": error}, status_code=400)


async def _json_body(request: Request) -> Optional[Any]:
    try:
        return await request.json()
    except Exception:
        return None


def _session_view(service: CoachService, call_id: str) -> Optional[dict[str, Any]]:
    session = service.sessions.peek(call_id)
    if session is None:
        return None
    return {
        "callId": session.call_id,
        "mode": session.mode.value,
        "section": session.section,
        "keyIndex": session.key_index,
        "currentPromptId": session.current_prompt_id,
        "objectionStreak": session.objection_streak,
        "endCallIntentStreak": session.end_call_intent_streak,
        "endIntentGrace": session.end_intent_grace,
        "pendingAdvanceAt": session.pending_advance_at,
        "nextQueued": session.next_queued.to_payload() if session.next_queued is not None else None,
        "endReason": session.end_reason,
        "transcriptTurns": len(session.transcript),
        "decisions": session.decisions,
    }


def _twiml_stream(public_host: str, call_sid: str) -> str:
    ws_url = f"wss://{public_host}/ws?callId={quote(call_sid, safe='')}"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<Response>\n"
        '  <Say voice="alice">Call connected. Live coach is starting.</Say>\n'
        "  <Connect>\n"
        f'    <Stream url="{html.escape(ws_url, quote=True)}" />\n'
        "  </Connect>\n"
        "</Response>"
    )


def create_app(service: Optional[CoachService] = None) -> FastAPI:
    if service is None:
        cfg = CoachConfig.from_env()
        configure_logging(cfg.log_level)
        service = CoachService(config=cfg, metrics=GLOBAL_PROM)
    svc = service

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await svc.aclose()

    app = FastAPI(title="Live Call Coach", lifespan=lifespan)
    app.state.coach = svc
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(svc.config.cors_origins),
        allow_credentials="*" not in svc.config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "service": svc.config.service_name}

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        return PlainTextResponse(GLOBAL_PROM.render())

    @app.post("/voice")
    async def voice(CallSid: str = Form("unknown")) -> Response:
        call_sid = CallSid.strip() or "unknown"
        logger.info("voice webhook for call %s", call_sid)
        return Response(content=_twiml_stream(svc.config.public_host, call_sid), media_type="text/xml")

    @app.post("/twilio/transcript")
    async def ingest_transcript(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            return _bad_request(svc, "transcript", "expected a JSON object body")
        try:
            req = TranscriptIngest.model_validate(body)
        except ValidationError as e:
            return _bad_request(svc, "transcript", f"sessionId, speaker, text are required ({validation_message(e)})")
        turn = await svc.ingest_transcript(req)
        return JSONResponse({"ok": True, "turn": turn.to_payload()})

    @app.post("/coach/analyze")
    async def analyze(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            return _bad_request(svc, "analyze", "expected a JSON object body")
        try:
            req = AnalyzeRequest.model_validate(body)
        except ValidationError as e:
            return _bad_request(svc, "analyze", f"sessionId and displayedTurns[] required ({validation_message(e)})")
        decision = await svc.analyze(req)
        return JSONResponse({"ok": True, "suggestion": decision.to_wire()})

    @app.get("/coach/sessions/{call_id}")
    async def session_state(call_id: str) -> JSONResponse:
        view = _session_view(svc, call_id.strip())
        if view is None:
            return JSONResponse({"ok": False, "error": "session not found"}, status_code=404)
        return JSONResponse({"ok": True, "session": view})

    @app.delete("/coach/sessions/{call_id}")
    async def reset_session(call_id: str) -> JSONResponse:
        existed = await svc.reset_session(call_id.strip())
        return JSONResponse({"ok": True, "reset": existed})

    @app.websocket("/ws")
    async def viewer_ws(ws: WebSocket) -> None:
        await ws.accept()
        listener = await svc.hub.attach(ws.query_params.get("callId"), StarletteTransport(ws))
        try:
            while True:
                msg = await ws.receive()
                if msg.get("type") == "websocket.disconnect":
                    return
                # Viewer messages (pings etc.) are ignored.
        finally:
            await svc.hub.detach(listener)

    return app


app = create_app()
