"""OpenAI Realtime API session client.

One instance per call. Owns the websocket to the model and the keepalive task
that re-sends the session configuration so long calls do not expire.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import websockets

from integrations.realtime_events import END_CALL_TOOL
from telephony.errors import RealtimeConnectionError

LOGGER = logging.getLogger(__name__)

# Twilio Media Streams carry G.711 mu-law at 8 kHz; the model is asked for the same.
AUDIO_FORMAT = "audio/pcmu"


def build_session_update(
    *,
    model: str,
    instructions: str,
    voice: str | None = None,
) -> dict[str, Any]:
    output: dict[str, Any] = {"format": {"type": AUDIO_FORMAT}}
    if voice:
        output["voice"] = voice

    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": model,
            "output_modalities": ["audio"],
            "audio": {
                "input": {
                    "format": {"type": AUDIO_FORMAT},
                    "turn_detection": {"type": "server_vad"},
                },
                "output": output,
            },
            "instructions": instructions,
            "tools": [
                {
                    "type": "function",
                    "name": END_CALL_TOOL,
                    "description": (
                        "Politely end the phone call when the caller says goodbye "
                        "or requests to end the conversation."
                    ),
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "reason": {"type": "string", "description": "Brief reason for ending."},
                        },
                        "required": [],
                    },
                }
            ],
        },
    }


def build_greeting_item(text: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def build_response_create(instructions: str | None = None) -> dict[str, Any]:
    if instructions is None:
        return {"type": "response.create"}
    return {"type": "response.create", "response": {"instructions": instructions}}


class RealtimeSessionClient:
    """Websocket connection to one OpenAI Realtime session."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str | None,
        model: str,
        instructions: str,
        greeting: str,
        voice: str | None = None,
        renew_interval_s: float = 3300.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._model = model
        self._greeting = greeting
        self._renew_interval_s = renew_interval_s
        self._connect = connect
        self._session_update = build_session_update(model=model, instructions=instructions, voice=voice)
        self._ws = None
        self._closed = False
        self._keepalive_task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    @property
    def keepalive_running(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    @property
    def session_update(self) -> dict[str, Any]:
        return self._session_update

    async def connect(self) -> None:
        if not self._api_key:
            raise RealtimeConnectionError("OPENAI_API_KEY is not configured.")

        url = f"{self._url}?model={self._model}"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            ws = await self._connect(url, additional_headers=headers, max_size=None)
        except (OSError, TimeoutError, websockets.WebSocketException) as exc:
            raise RealtimeConnectionError(f"Connecting to {self._url} failed: {exc}") from exc

        if self._closed:
            # close() ran while the handshake was in flight.
            await ws.close()
            raise RealtimeConnectionError("Realtime session was closed while connecting.")
        self._ws = ws

        LOGGER.info("Realtime session connected (model=%s); sending session.update", self._model)
        await self.send(self._session_update)
        await self.send(build_greeting_item(self._greeting))
        await self.send(build_response_create())

        self._keepalive_task = asyncio.create_task(self._keepalive())

    async def send(self, message: dict[str, Any]) -> bool:
        event_type = message.get("type")
        if not self.is_open:
            LOGGER.warning("Realtime session not open; dropping %s", event_type)
            return False
        try:
            await self._ws.send(json.dumps(message))
        except websockets.ConnectionClosed as exc:
            LOGGER.warning("Realtime send of %s failed: %s", event_type, exc)
            self._mark_closed()
            return False
        except OSError as exc:
            LOGGER.warning("Realtime send of %s failed: %s", event_type, exc)
            return False
        return True

    async def messages(self) -> AsyncIterator[str | bytes]:
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                yield raw
        except websockets.ConnectionClosed as exc:
            LOGGER.warning("Realtime session closed abnormally: %s", exc)
        finally:
            self._mark_closed()

    async def close(self) -> None:
        self._mark_closed()
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except OSError as exc:
            LOGGER.debug("Realtime socket close failed: %s", exc)

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._renew_interval_s)
            if not self.is_open:
                return
            LOGGER.debug("Renewing realtime session configuration")
            await self.send(self._session_update)

    def _mark_closed(self) -> None:
        self._closed = True
        task = self._keepalive_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
