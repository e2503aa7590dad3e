from __future__ import annotations

import asyncio

from fakes import FakeCallLeg, FakeRealtime

from telephony.call_session import CallPhase, CallSession
from telephony.errors import CallControlError

START = {"event": "start", "start": {"streamSid": "S1", "callSid": "C1"}}
END_CALL_DONE = {
    "type": "response.done",
    "response": {
        "output": [
            {"type": "function_call", "name": "end_call", "arguments": "{\"reason\": \"done\"}"},
        ]
    },
}
TURN_DONE = {"type": "response.done", "response": {"output": []}}


class FakeCallControl:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.completed: list[str] = []

    async def complete_call(self, call_sid: str) -> None:
        if self.fail:
            raise CallControlError("twilio said no")
        self.completed.append(call_sid)


def _run(coro):
    return asyncio.run(coro)


async def _settle() -> None:
    await asyncio.sleep(0.02)


async def _start(leg, remote, **kwargs):
    session = CallSession(leg, remote, **kwargs)
    task = asyncio.create_task(session.run())
    await _settle()
    return session, task


def test_media_is_relayed_both_ways_unchanged():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)
        assert session.phase is CallPhase.ACTIVE

        leg.push(START)
        for payload in ("cDE=", "cDI=", "cDM="):
            leg.push({"event": "media", "media": {"track": "inbound", "payload": payload}})
        await _settle()

        assert session.stream_sid == "S1"
        assert session.call_sid == "C1"
        assert remote.sent == [
            {"type": "input_audio_buffer.append", "audio": "cDE="},
            {"type": "input_audio_buffer.append", "audio": "cDI="},
            {"type": "input_audio_buffer.append", "audio": "cDM="},
        ]

        remote.push({"type": "response.output_audio.delta", "delta": "ZDE="})
        remote.push({"type": "response.audio.delta", "delta": {"audio": "ZDI="}})
        await _settle()

        assert leg.sent == [
            {"event": "media", "streamSid": "S1", "media": {"payload": "ZDE="}},
            {"event": "media", "streamSid": "S1", "media": {"payload": "ZDI="}},
        ]
        assert session.counters.inbound_chunks == 3
        assert session.counters.inbound_bytes == 6
        assert session.counters.outbound_chunks == 2

        leg.push({"event": "stop"})
        await asyncio.wait_for(task, timeout=1)
        return session, leg, remote

    session, leg, remote = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert remote.sent_types()[-2:] == ["input_audio_buffer.commit", "response.create"]
    assert remote.closed
    assert leg.closed


def test_model_audio_before_stream_start_is_dropped():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)

        remote.push({"type": "response.output_audio.delta", "delta": "ZWFybHk="})
        await _settle()
        assert leg.sent == []
        assert session.counters.outbound_dropped == 1

        leg.push(START)
        remote.push({"type": "response.output_audio.delta", "delta": "bGF0ZQ=="})
        await _settle()
        assert leg.sent == [{"event": "media", "streamSid": "S1", "media": {"payload": "bGF0ZQ=="}}]

        leg.hang_up()
        await asyncio.wait_for(task, timeout=1)

    _run(scenario())


def test_speech_started_cancels_before_further_audio():
    order: list[str] = []

    class OrderedLeg(FakeCallLeg):
        async def send_media(self, stream_sid, payload):
            order.append(f"media:{payload}")
            return await super().send_media(stream_sid, payload)

    class OrderedRealtime(FakeRealtime):
        async def send(self, message):
            order.append(message["type"])
            return await super().send(message)

    async def scenario():
        leg, remote = OrderedLeg(), OrderedRealtime()
        session, task = await _start(leg, remote)
        leg.push(START)
        await _settle()

        remote.push({"type": "input_audio_buffer.speech_started"})
        remote.push({"type": "response.output_audio.delta", "delta": "QQ=="})
        await _settle()

        assert session.counters.barge_ins == 1
        leg.hang_up()
        await asyncio.wait_for(task, timeout=1)

    _run(scenario())
    assert order.index("response.cancel") < order.index("media:QQ==")


def test_end_call_is_idempotent_and_finalizes_on_turn_complete():
    control = FakeCallControl()

    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote, call_control=control, hangup_grace_seconds=5)
        leg.push(START)
        await _settle()

        remote.push(END_CALL_DONE)
        remote.push(END_CALL_DONE)
        await _settle()

        creates = [m for m in remote.sent if m["type"] == "response.create"]
        assert len(creates) == 1
        assert "done" in creates[0]["response"]["instructions"]
        assert session.phase is CallPhase.DRAINING

        remote.push(TURN_DONE)
        await asyncio.wait_for(task, timeout=1)
        return session, leg

    session, leg = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert control.completed == ["C1"]
    assert leg.closed


def test_draining_session_closes_after_grace_period():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote, hangup_grace_seconds=0.05)
        leg.push(START)
        remote.push(END_CALL_DONE)
        await asyncio.wait_for(task, timeout=1)
        return session

    session = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert session.hangup.finalized


def test_rest_hangup_failure_still_closes_session():
    control = FakeCallControl(fail=True)

    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote, call_control=control, hangup_grace_seconds=0.01)
        leg.push(START)
        remote.push(END_CALL_DONE)
        await asyncio.wait_for(task, timeout=1)
        return session, leg, remote

    session, leg, remote = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert leg.closed
    assert remote.closed


def test_stop_while_draining_skips_final_commit():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote, hangup_grace_seconds=5)
        leg.push(START)
        remote.push(END_CALL_DONE)
        await _settle()
        leg.push({"event": "stop"})
        await asyncio.wait_for(task, timeout=1)
        return remote

    remote = _run(scenario())
    assert "input_audio_buffer.commit" not in remote.sent_types()


def test_remote_connect_failure_closes_call_leg():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime(fail_connect=True)
        session = CallSession(leg, remote)
        await asyncio.wait_for(session.run(), timeout=1)
        return session, leg

    session, leg = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert leg.closed


def test_remote_disconnect_tears_down_session():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)
        remote.drop()
        await asyncio.wait_for(task, timeout=1)
        return session, leg

    session, leg = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert leg.closed


def test_malformed_frames_are_ignored():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)
        leg.inbound.put_nowait("not json")
        leg.push({"event": "mark", "mark": {"name": "x"}})
        remote.push_raw("{broken")
        remote.push({"type": "rate_limits.updated"})
        await _settle()
        assert session.phase is CallPhase.ACTIVE
        leg.hang_up()
        await asyncio.wait_for(task, timeout=1)

    _run(scenario())


def test_close_is_idempotent():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)
        await asyncio.gather(session.close(), session.close())
        await asyncio.wait_for(task, timeout=1)
        return session

    session = _run(scenario())
    assert session.phase is CallPhase.CLOSED


def test_caller_audio_while_connecting_is_dropped_and_counted():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime(connect_delay=0.2)
        session, task = await _start(leg, remote)
        assert session.phase is CallPhase.CONNECTING

        leg.push(START)
        leg.push({"event": "media", "media": {"track": "inbound", "payload": "cDE="}})
        await _settle()
        assert session.stream_sid == "S1"
        assert remote.sent == []
        assert session.counters.inbound_dropped == 1

        await asyncio.sleep(0.25)
        assert session.phase is CallPhase.ACTIVE
        leg.push({"event": "media", "media": {"track": "inbound", "payload": "cDI="}})
        await _settle()

        leg.push({"event": "stop"})
        await asyncio.wait_for(task, timeout=1)
        return session, remote

    session, remote = _run(scenario())
    appended = [m["audio"] for m in remote.sent if m["type"] == "input_audio_buffer.append"]
    assert appended == ["cDI="]
    assert session.counters.inbound_chunks == 1
    assert session.counters.inbound_dropped == 1


def test_call_leg_hangup_while_connecting_closes_session():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime(connect_delay=5)
        session, task = await _start(leg, remote)
        assert session.phase is CallPhase.CONNECTING

        leg.hang_up()
        await asyncio.wait_for(task, timeout=1)
        return session, leg, remote

    session, leg, remote = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert not remote.connected
    assert remote.closed
    assert remote.sent == []
    assert leg.closed


def test_close_while_connecting_abandons_remote_session():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime(connect_delay=5)
        session, task = await _start(leg, remote)

        await session.close()
        await asyncio.wait_for(task, timeout=1)
        return session, remote

    session, remote = _run(scenario())
    assert session.phase is CallPhase.CLOSED
    assert not remote.connected
    assert remote.closed


def test_repeated_start_keeps_known_stream_sid():
    async def scenario():
        leg, remote = FakeCallLeg(), FakeRealtime()
        session, task = await _start(leg, remote)
        leg.push(START)
        leg.push({"event": "start", "start": {"callSid": "C2"}})
        await _settle()

        assert session.stream_sid == "S1"
        assert session.call_sid == "C2"
        leg.hang_up()
        await asyncio.wait_for(task, timeout=1)

    _run(scenario())
