"""Twilio Media Streams call leg.

Parses the JSON frames Twilio sends over a bidirectional <Connect><Stream> and
builds the outbound media frames. Payloads stay base64 text end to end; the
relay never decodes audio.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

LOGGER = logging.getLogger(__name__)

STOP_EVENTS = frozenset({"stop", "disconnect"})


@dataclass(frozen=True, slots=True)
class StreamStart:
    stream_sid: str | None
    call_sid: str | None


@dataclass(frozen=True, slots=True)
class MediaChunk:
    payload: str


@dataclass(frozen=True, slots=True)
class StreamStop:
    event: str


TwilioStreamEvent = Union[StreamStart, MediaChunk, StreamStop]


def parse_twilio_ws_message(text: str | bytes) -> TwilioStreamEvent | None:
    """Turn one Media Streams frame into a typed event; None for anything we ignore."""

    try:
        message = json.loads(text)
    except (TypeError, ValueError):
        LOGGER.debug("Ignoring non-JSON Twilio frame")
        return None
    if not isinstance(message, dict):
        return None

    event = str(message.get("event") or "")

    if event == "start":
        start: dict[str, Any] = message.get("start") or {}
        stream_sid = start.get("streamSid") or start.get("sid") or message.get("streamSid")
        call_sid = start.get("callSid") or start.get("call_sid")
        return StreamStart(
            stream_sid=str(stream_sid) if stream_sid else None,
            call_sid=str(call_sid) if call_sid else None,
        )

    if event == "media":
        media = message.get("media") or {}
        if media.get("track") and media.get("track") != "inbound":
            return None
        payload = media.get("payload")
        if isinstance(payload, str) and payload:
            return MediaChunk(payload=payload)
        return None

    if event in STOP_EVENTS:
        return StreamStop(event=event)

    # "connected", "mark", "dtmf" and unknown events carry nothing the relay needs.
    return None


def build_media_message(stream_sid: str, payload: str) -> str:
    return json.dumps({"event": "media", "streamSid": stream_sid, "media": {"payload": payload}})


class TwilioMediaStream:
    """Call leg backed by an accepted FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self._websocket.application_state == WebSocketState.CONNECTED

    async def events(self) -> AsyncIterator[TwilioStreamEvent]:
        try:
            while True:
                text = await self._websocket.receive_text()
                event = parse_twilio_ws_message(text)
                if event is not None:
                    yield event
        except WebSocketDisconnect as exc:
            LOGGER.info("Twilio socket disconnected (code=%s)", exc.code)
            self._closed = True

    async def send_media(self, stream_sid: str, payload: str) -> bool:
        if not self.is_open:
            return False
        try:
            await self._websocket.send_text(build_media_message(stream_sid, payload))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            LOGGER.warning("Forwarding audio to Twilio failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close()
        except (RuntimeError, OSError) as exc:
            LOGGER.debug("Twilio socket already closing: %s", exc)
