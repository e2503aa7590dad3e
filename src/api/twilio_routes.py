"""Twilio Voice integration.

This module provides:
- Voice webhook returning TwiML that connects the call to a bidirectional Media Stream.
- The Media Stream WebSocket, where each admitted call gets a CallSession.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape, quoteattr

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_admission_gate, get_call_session_factory
from config.settings import get_settings
from integrations.twilio_streaming import TwilioMediaStream
from telephony.admission import AdmissionGate

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

MEDIA_STREAM_PATH = "/api/twilio/media"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_connect_stream(*, say_text: str, voice: str, stream_url: str) -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say voice={quoteattr(voice)}>{escape(say_text)}</Say>"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)} />"
        "</Connect>"
        "</Response>"
    )


def _media_stream_url(request: Request) -> str:
    settings = get_settings()
    # Behind a proxy the request host is usually wrong; prefer PUBLIC_HOST.
    host = settings.public_host or request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


@router.post("/incoming-call")
async def twilio_incoming_call(request: Request) -> Response:
    settings = get_settings()
    return _twiml_response(
        _twiml_connect_stream(
            say_text=settings.twilio_connect_message,
            voice=settings.twilio_say_voice,
            stream_url=_media_stream_url(request),
        )
    )


async def _deny_capacity(websocket: WebSocket) -> None:
    try:
        await websocket.send_denial_response(
            Response(content="Service Unavailable", status_code=503, media_type="text/plain")
        )
    except RuntimeError:
        # Server lacks the websocket.http.response extension; a close before
        # accept still refuses the upgrade.
        await websocket.close(code=1013, reason="Server at capacity")


@router.websocket("/media")
async def twilio_media_stream(
    websocket: WebSocket,
    gate: AdmissionGate = Depends(get_admission_gate),
    session_factory=Depends(get_call_session_factory),
) -> None:
    if not await gate.try_acquire():
        await _deny_capacity(websocket)
        return

    try:
        await websocket.accept()
        LOGGER.info("New Twilio media connection; active=%d", gate.active)
        session = session_factory(TwilioMediaStream(websocket))
        await session.run()
    finally:
        await gate.release()
