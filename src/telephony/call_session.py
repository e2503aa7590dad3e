"""Per-call relay between one Twilio media stream and one realtime model session."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

from integrations.openai_realtime import build_response_create
from integrations.realtime_events import (
    END_CALL_TOOL,
    AudioDelta,
    RealtimeEvent,
    SpeechStarted,
    ToolInvocation,
    TurnComplete,
    Unrecognized,
    classify_realtime_message,
)
from integrations.twilio_streaming import MediaChunk, StreamStart, StreamStop
from telephony.errors import RealtimeConnectionError
from telephony.hangup import HangupCoordinator
from telephony.media_relay import MediaRelay, RelayCounters

LOGGER = logging.getLogger(__name__)


class CallPhase(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


class CallSession:
    """Owns both legs of a call and drives its lifecycle.

    CONNECTING -> ACTIVE once the realtime session is open. An ``end_call`` tool
    invocation moves ACTIVE -> DRAINING, and the goodbye turn completing (or the
    grace timer) ends the call. Any leg closing or failing goes straight to
    CLOSED through ``close()``, which tears everything down exactly once.
    """

    def __init__(
        self,
        call_leg,
        remote,
        *,
        call_control=None,
        hangup_grace_seconds: float = 2.0,
        farewell: str = "Thank you for calling.",
    ) -> None:
        self._call_leg = call_leg
        self._remote = remote
        self._phase = CallPhase.CONNECTING
        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self._relay = MediaRelay(call_leg, remote)
        self._hangup = HangupCoordinator(
            request_final_turn=self._request_final_turn,
            close_session=self.close,
            call_control=call_control,
            call_sid=lambda: self.call_sid,
            grace_seconds=hangup_grace_seconds,
            farewell=farewell,
        )
        self._teardown_task: asyncio.Task | None = None
        self._closed = asyncio.Event()

    @property
    def phase(self) -> CallPhase:
        return self._phase

    @property
    def counters(self) -> RelayCounters:
        return self._relay.counters

    @property
    def hangup(self) -> HangupCoordinator:
        return self._hangup

    async def run(self) -> None:
        # The call leg is read from the start so audio sent while CONNECTING is
        # dropped and counted, and a hangup during connect is noticed at once.
        pumps = {asyncio.create_task(self._pump_call_leg(), name="twilio->realtime")}
        try:
            if await self._connect_remote(pumps):
                self._phase = CallPhase.ACTIVE
                pumps.add(asyncio.create_task(self._pump_remote(), name="realtime->twilio"))
                await self._wait_until_closed(pumps)
        finally:
            await _reap(pumps)
            await self.close()

    async def _connect_remote(self, pumps: set[asyncio.Task]) -> bool:
        connecting = asyncio.create_task(self._remote.connect(), name="realtime-connect")
        try:
            await self._wait_until_closed({connecting, *pumps})
        finally:
            connecting.cancel()
            await asyncio.wait({connecting})

        if connecting.cancelled():
            LOGGER.info("Call leg ended before the realtime session opened (call_sid=%s)", self.call_sid)
            await self._remote.close()
            return False

        exc = connecting.exception()
        if isinstance(exc, RealtimeConnectionError):
            if self._phase is CallPhase.CLOSED:
                LOGGER.debug("Realtime connect abandoned after teardown: %s", exc.detail)
            else:
                LOGGER.error("Realtime session failed to open: %s", exc.detail)
            return False
        if exc is not None:
            raise exc

        if self._phase is not CallPhase.CONNECTING:
            # Torn down while the handshake finished; the new socket must not outlive the call.
            await self._remote.close()
            return False
        return True

    async def _wait_until_closed(self, tasks: set[asyncio.Task]) -> None:
        closed_waiter = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({*tasks, closed_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_waiter.cancel()

    async def close(self) -> None:
        if self._teardown_task is None:
            self._teardown_task = asyncio.create_task(self._teardown())
        await asyncio.shield(self._teardown_task)

    async def _teardown(self) -> None:
        self._phase = CallPhase.CLOSED
        self._hangup.cancel()
        await self._remote.close()
        await self._call_leg.close()
        self._closed.set()
        LOGGER.info(
            "Session closed (stream_sid=%s call_sid=%s) metrics=%s",
            self.stream_sid,
            self.call_sid,
            self.counters.summary(),
        )

    async def _pump_call_leg(self) -> None:
        async for event in self._call_leg.events():
            if self._phase is CallPhase.CLOSED:
                return
            if isinstance(event, StreamStart):
                self.stream_sid = event.stream_sid or self.stream_sid
                self.call_sid = event.call_sid or self.call_sid
                LOGGER.info("Twilio stream started stream_sid=%s call_sid=%s", self.stream_sid, self.call_sid)
            elif isinstance(event, MediaChunk):
                await self._relay.forward_inbound(event.payload)
            elif isinstance(event, StreamStop):
                LOGGER.info("Twilio stream %s (%s)", event.event, self.stream_sid)
                break
        await self._on_call_leg_ended()

    async def _on_call_leg_ended(self) -> None:
        if self._phase is CallPhase.ACTIVE and self._remote.is_open:
            # Let the model see whatever the caller said last.
            await self._remote.send({"type": "input_audio_buffer.commit"})
            await self._remote.send(build_response_create())
        await self.close()

    async def _pump_remote(self) -> None:
        async for raw in self._remote.messages():
            if self._phase is CallPhase.CLOSED:
                return
            await self.handle_realtime_event(classify_realtime_message(raw))
        LOGGER.info("Realtime session ended (stream_sid=%s)", self.stream_sid)
        await self.close()

    async def handle_realtime_event(self, event: RealtimeEvent) -> None:
        if isinstance(event, SpeechStarted):
            LOGGER.info("Caller speech started; cancelling in-flight response")
            self.counters.barge_ins += 1
            await self._remote.send({"type": "response.cancel"})
        elif isinstance(event, AudioDelta):
            await self._relay.forward_outbound(self.stream_sid, event.payload)
        elif isinstance(event, ToolInvocation):
            if event.name == END_CALL_TOOL:
                LOGGER.info("end_call tool invoked: %s", event.arguments)
                await self._begin_hangup(_reason_from(event.arguments))
        elif isinstance(event, TurnComplete):
            if self._phase is CallPhase.DRAINING:
                LOGGER.info("Goodbye turn complete (%s); finalizing", event.event_type)
                await self._hangup.finalize()
        elif isinstance(event, Unrecognized):
            LOGGER.debug("Realtime event ignored: %s", event.event_type)

    async def _begin_hangup(self, reason: str | None) -> None:
        if self._phase is CallPhase.ACTIVE:
            self._phase = CallPhase.DRAINING
        await self._hangup.initiate(reason)

    async def _request_final_turn(self, text: str) -> None:
        await self._remote.send(build_response_create(text))


async def _reap(tasks: set[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            LOGGER.exception("Relay task %s failed", task.get_name())


def _reason_from(arguments: dict[str, Any]) -> str | None:
    reason = arguments.get("reason")
    if isinstance(reason, str):
        return reason
    return None
