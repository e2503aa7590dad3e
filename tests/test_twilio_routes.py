from __future__ import annotations

import pytest
from fakes import FakeRealtime
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketDenialResponse

from telephony.admission import AdmissionGate
from telephony.call_session import CallSession


class EchoRealtime(FakeRealtime):
    """Answers every chunk of caller audio with the same bytes as model audio."""

    async def send(self, message: dict) -> bool:
        sent = await super().send(message)
        if sent and message["type"] == "input_audio_buffer.append":
            self.push({"type": "response.output_audio.delta", "delta": message["audio"]})
        return sent


def _echo_session(call_leg) -> CallSession:
    return CallSession(call_leg, EchoRealtime())


def _override(app, gate: AdmissionGate) -> None:
    import api.dependencies as deps

    app.dependency_overrides[deps.get_admission_gate] = lambda: gate
    app.dependency_overrides[deps.get_call_session_factory] = lambda: _echo_session


def test_ping(client):
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.text == "OK"


def test_incoming_call_returns_connect_stream_twiml(client):
    resp = client.post("/api/twilio/incoming-call", data={"CallSid": "CA111"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<Say voice=\"Google.en-US-Neural2-C\">" in resp.text
    assert "<Connect><Stream url=\"wss://relay.example.com/api/twilio/media\" /></Connect>" in resp.text


def test_health_reports_capacity(app):
    gate = AdmissionGate(3)
    _override(app, gate)

    with TestClient(app) as client:
        resp = client.get("/api/health")

    app.dependency_overrides.clear()
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "active_calls": 0,
        "max_calls": 3,
        "total_calls": 0,
        "rejected_calls": 0,
    }


def test_media_stream_relays_audio_and_releases_slot(app):
    gate = AdmissionGate(1)
    _override(app, gate)

    with TestClient(app) as client:
        with client.websocket_connect("/api/twilio/media") as ws:
            ws.send_json({"event": "connected", "protocol": "Call"})
            ws.send_json({"event": "start", "start": {"streamSid": "S1", "callSid": "C1"}})
            ws.send_json({"event": "media", "media": {"track": "inbound", "payload": "cDE="}})

            echoed = ws.receive_json()
            assert echoed == {"event": "media", "streamSid": "S1", "media": {"payload": "cDE="}}

            ws.send_json({"event": "stop", "streamSid": "S1"})

    app.dependency_overrides.clear()
    assert gate.active == 0
    assert gate.total_admitted == 1


def test_media_stream_rejects_calls_beyond_capacity(app):
    gate = AdmissionGate(1)
    _override(app, gate)

    with TestClient(app) as client:
        with client.websocket_connect("/api/twilio/media") as first:
            first.send_json({"event": "start", "start": {"streamSid": "S1", "callSid": "C1"}})

            with pytest.raises(WebSocketDenialResponse) as denied:
                with client.websocket_connect("/api/twilio/media"):
                    pass

            assert denied.value.status_code == 503
            assert gate.active == 1

            first.send_json({"event": "stop"})

    app.dependency_overrides.clear()
    assert gate.total_rejected == 1
    assert gate.active == 0
