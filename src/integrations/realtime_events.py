"""Classification of OpenAI Realtime server events.

The Realtime API has shipped several shapes for the same payload (beta vs. GA
event names, nested vs. flat audio fields). Everything the call session needs is
reduced here to a small closed set of event kinds; this module has no I/O.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

LOGGER = logging.getLogger(__name__)

END_CALL_TOOL = "end_call"

SPEECH_STARTED_EVENT = "input_audio_buffer.speech_started"
RESPONSE_DONE_EVENT = "response.done"
TURN_COMPLETE_EVENTS = frozenset({
    RESPONSE_DONE_EVENT,
    "response.output_audio.done",
    "response.audio.done",
})
AUDIO_DELTA_EVENTS = frozenset({
    "response.output_audio.delta",
    "response.audio.delta",
})


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    """Caller started talking; in-flight generation should be cancelled."""


@dataclass(frozen=True, slots=True)
class AudioDelta:
    payload: str


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True, slots=True)
class TurnComplete:
    event_type: str


@dataclass(frozen=True, slots=True)
class Unrecognized:
    event_type: str | None = None


RealtimeEvent = Union[SpeechStarted, AudioDelta, ToolInvocation, TurnComplete, Unrecognized]


def decode_realtime_message(raw: str | bytes) -> dict[str, Any] | None:
    try:
        event = json.loads(raw)
    except (TypeError, ValueError):
        LOGGER.debug("Ignoring non-JSON realtime frame")
        return None
    if not isinstance(event, dict):
        return None
    return event


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Function-call arguments arrive either decoded or as a JSON string."""

    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)) and raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            LOGGER.warning("Unparseable tool arguments: %r", raw)
            return {}
        if isinstance(parsed, dict):
            return parsed
    return {}


def extract_audio_payload(event: dict[str, Any]) -> str | None:
    event_type = str(event.get("type") or "")
    delta = event.get("delta")

    if event_type in AUDIO_DELTA_EVENTS and delta:
        if isinstance(delta, str):
            return delta
        if isinstance(delta, dict) and isinstance(delta.get("audio"), str):
            return delta["audio"]

    chunk = event.get("chunk")
    if isinstance(chunk, str) and chunk:
        return chunk

    output_audio = event.get("output_audio")
    if isinstance(output_audio, dict) and isinstance(output_audio.get("data"), str):
        return output_audio["data"] or None

    # Transcript deltas also carry a string "delta"; those are text, not audio.
    if isinstance(delta, str) and delta and "audio" in event_type and "transcript" not in event_type:
        return delta

    return None


def extract_tool_invocation(event: dict[str, Any]) -> ToolInvocation | None:
    if event.get("type") != RESPONSE_DONE_EVENT:
        return None
    response = event.get("response")
    if not isinstance(response, dict):
        return None
    output = response.get("output")
    if not isinstance(output, list):
        return None

    for item in output:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "function_call" and item.get("name") == END_CALL_TOOL:
            return ToolInvocation(
                name=END_CALL_TOOL,
                arguments=parse_tool_arguments(item.get("arguments")),
                call_id=item.get("call_id"),
            )
    return None


def classify_realtime_event(event: dict[str, Any]) -> RealtimeEvent:
    event_type = event.get("type")
    if not isinstance(event_type, str):
        event_type = None

    if event_type == SPEECH_STARTED_EVENT:
        return SpeechStarted()

    tool = extract_tool_invocation(event)
    if tool is not None:
        return tool

    if event_type in TURN_COMPLETE_EVENTS:
        return TurnComplete(event_type=event_type)

    payload = extract_audio_payload(event)
    if payload:
        return AudioDelta(payload=payload)

    return Unrecognized(event_type=event_type)


def classify_realtime_message(raw: str | bytes) -> RealtimeEvent:
    event = decode_realtime_message(raw)
    if event is None:
        return Unrecognized()
    return classify_realtime_event(event)
