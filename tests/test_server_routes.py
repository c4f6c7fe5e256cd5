from __future__ import annotations

from typing import Any

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from coach.clock import FakeClock
from coach.config import CoachConfig
from coach.metrics import COACH, Metrics
from coach.prom_export import GLOBAL_PROM
from coach.server import create_app
from coach.service import CoachService


def _service(**kwargs: Any) -> CoachService:
    kwargs.setdefault("metrics", Metrics())
    return CoachService(clock=FakeClock(start_ms=50_000), **kwargs)


def test_health_routes() -> None:
    with TestClient(create_app(_service())) as client:
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"ok": True, "service": "real-estate-live-coach-backend"}
        assert client.get("/healthz").json() == {"ok": True}


def test_transcript_validation_rejects_without_touching_state() -> None:
    svc = _service()
    with TestClient(create_app(svc)) as client:
        r = client.post("/twilio/transcript", json={"sessionId": "c1", "speaker": "prospect"})
        assert r.status_code == 400
        body = r.json()
        assert body["ok"] is False
        assert body["error"].startswith("sessionId, speaker, text are required")

        r = client.post("/twilio/transcript", content=b"not json", headers={"content-type": "application/json"})
        assert r.status_code == 400

    assert len(svc.sessions) == 0
    assert svc.metrics_local.get(COACH["request_rejected_total"]) == 2


def test_transcript_ingest_records_turn() -> None:
    svc = _service()
    with TestClient(create_app(svc)) as client:
        r = client.post("/twilio/transcript", json={"sessionId": "c1", "speaker": "prospect", "text": "hello"})
        assert r.status_code == 200
        assert r.json() == {"ok": True, "turn": {"timestamp": 50_000, "speaker": "prospect", "text": "hello"}}

    session = svc.sessions.peek("c1")
    assert session is not None
    assert [t.text for t in session.transcript] == ["hello"]


def test_analyze_validation() -> None:
    svc = _service()
    with TestClient(create_app(svc)) as client:
        r = client.post("/coach/analyze", json={"sessionId": "c1"})
        assert r.status_code == 400
        assert r.json()["error"].startswith("sessionId and displayedTurns[] required")
        r = client.post("/coach/analyze", json=["not", "an", "object"])
        assert r.status_code == 400
    assert len(svc.sessions) == 0


def test_analyze_flow_start_objection_resolution() -> None:
    with TestClient(create_app(_service())) as client:
        r = client.post("/coach/analyze", json={"sessionId": "c1", "displayedTurns": []})
        assert r.status_code == 200
        first = r.json()["suggestion"]
        assert first["promptId"] == "S1Q1"
        assert first["shouldEndCall"] is False
        assert first["note"] == "start_or_recover_key_question"

        turns = [{"timestamp": 1, "speaker": "prospect", "text": "too expensive"}]
        s = client.post("/coach/analyze", json={"sessionId": "c1", "displayedTurns": turns}).json()["suggestion"]
        assert s["mode"] == "objection"
        assert s["prompt"] == "Totally fair — compared to what?"
        assert len(s["alternatives"]) <= 2

        turns.append({"timestamp": 2, "speaker": "prospect", "text": "ok that works"})
        s = client.post("/coach/analyze", json={"sessionId": "c1", "displayedTurns": turns}).json()["suggestion"]
        assert s["mode"] == "key_question"
        assert s["promptId"] == "S1Q1"
        assert "preface" in s

        view = client.get("/coach/sessions/c1").json()["session"]
        assert view["mode"] == "key_question"
        assert view["objectionStreak"] == 0
        assert view["decisions"] == 3


def test_analyze_apply_queued_advance_action() -> None:
    with TestClient(create_app(_service())) as client:
        client.post("/coach/analyze", json={"sessionId": "c1", "displayedTurns": [], "now": 1000})
        held = client.post(
            "/coach/analyze",
            json={"sessionId": "c1", "displayedTurns": [{"timestamp": 1, "speaker": "prospect", "text": "yes"}], "now": 1100},
        ).json()["suggestion"]
        assert held["delayMs"] == 2000
        assert held["queuedNext"]["id"] == "S1Q2"

        r = client.post(
            "/coach/analyze",
            json={"sessionId": "c1", "displayedTurns": [], "now": 3200, "action": "applyQueuedAdvance"},
        ).json()["suggestion"]
        assert r["promptId"] == "S1Q2"
        assert r["queuedNext"]["id"] == "S1Q3"


def test_session_view_and_reset() -> None:
    with TestClient(create_app(_service())) as client:
        assert client.get("/coach/sessions/c1").status_code == 404
        client.post("/coach/analyze", json={"sessionId": "c1", "displayedTurns": []})
        assert client.get("/coach/sessions/c1").json()["session"]["currentPromptId"] == "S1Q1"
        assert client.delete("/coach/sessions/c1").json() == {"ok": True, "reset": True}
        assert client.delete("/coach/sessions/c1").json() == {"ok": True, "reset": False}
        assert client.get("/coach/sessions/c1").status_code == 404


def test_voice_webhook_returns_stream_twiml() -> None:
    svc = _service(config=CoachConfig(public_host="coach.example.com"))
    with TestClient(create_app(svc)) as client:
        r = client.post("/voice", data={"CallSid": "CA123"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/xml")
        assert '<Stream url="wss://coach.example.com/ws?callId=CA123" />' in r.text

        r = client.post("/voice", files={"CallSid": (None, "CA999")})
        assert r.status_code == 200
        assert "callId=CA999" in r.text

        assert "callId=unknown" in client.post("/voice").text


def test_metrics_endpoint_renders_prometheus_text() -> None:
    with TestClient(create_app(_service(metrics=GLOBAL_PROM))) as client:
        client.post("/coach/analyze", json={"sessionId": "m1", "displayedTurns": []})
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "# TYPE coach_decisions_total counter" in r.text
        assert "coach_decision_ms_bucket" in r.text


def test_ws_viewer_receives_call_events() -> None:
    svc = _service()
    with TestClient(create_app(svc)) as client:
        with client.websocket_connect("/ws?callId=c1") as ws:
            hello = ws.receive_json()
            assert hello == {"type": "system", "payload": {"message": "connected", "callId": "c1"}}

            client.post("/twilio/transcript", json={"callId": "c1", "speaker": "prospect", "text": "too expensive"})
            ev = ws.receive_json()
            assert ev["type"] == "transcript"
            assert ev["payload"]["text"] == "too expensive"

            client.post(
                "/coach/analyze",
                json={"sessionId": "c1", "displayedTurns": [{"ts": 1, "speaker": "prospect", "text": "too expensive"}]},
            )
            ev = ws.receive_json()
            assert ev["type"] == "coach"
            assert ev["payload"]["mode"] == "objection"
            assert svc.hub.listener_count("c1") == 1


def test_cors_preflight_and_simple_request() -> None:
    svc = _service(config=CoachConfig(cors_origins=("https://viewer.example.com",)))
    with TestClient(create_app(svc)) as client:
        r = client.options(
            "/coach/analyze",
            headers={
                "Origin": "https://viewer.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "https://viewer.example.com"

        r = client.post(
            "/coach/analyze",
            json={"sessionId": "c1", "displayedTurns": []},
            headers={"Origin": "https://viewer.example.com"},
        )
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "https://viewer.example.com"

        r = client.options(
            "/coach/analyze",
            headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
        )
        assert "access-control-allow-origin" not in r.headers


def test_padded_call_id_reaches_viewers_on_trimmed_channel() -> None:
    svc = _service()
    with TestClient(create_app(svc)) as client:
        with client.websocket_connect("/ws?callId=c1") as ws:
            ws.receive_json()
            r = client.post("/twilio/transcript", json={"sessionId": " c1 ", "speaker": "prospect", "text": "hi"})
            assert r.status_code == 200
            ev = ws.receive_json()
            assert ev["type"] == "transcript"
            assert ev["payload"]["text"] == "hi"

        assert client.get("/coach/sessions/c1").status_code == 200
    assert svc.sessions.peek(" c1 ") is None
