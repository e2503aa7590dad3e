from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

LOGGER = logging.getLogger(__name__)


def b64_decoded_size(payload: str) -> int:
    """Length of the bytes behind a base64 string, without decoding it."""

    if not payload:
        return 0
    padding = len(payload) - len(payload.rstrip("="))
    return (len(payload) * 3) // 4 - padding


@dataclass(slots=True)
class RelayCounters:
    inbound_chunks: int = 0
    inbound_bytes: int = 0
    outbound_chunks: int = 0
    outbound_bytes: int = 0
    inbound_dropped: int = 0
    outbound_dropped: int = 0
    barge_ins: int = 0

    def summary(self) -> dict[str, Any]:
        return asdict(self)


class MediaRelay:
    """Pass-through of base64 audio between the call leg and the realtime session.

    Payloads are forwarded as received: no transcoding, no buffering, one message
    in, one message out. Counters only move on a successful forward.
    """

    def __init__(self, call_leg, remote) -> None:
        self._call_leg = call_leg
        self._remote = remote
        self.counters = RelayCounters()

    async def forward_inbound(self, payload: str) -> bool:
        if not self._remote.is_open:
            self._record_inbound_drop("realtime session not open")
            return False

        sent = await self._remote.send({"type": "input_audio_buffer.append", "audio": payload})
        if not sent:
            self._record_inbound_drop("send failed")
            return False

        self.counters.inbound_chunks += 1
        self.counters.inbound_bytes += b64_decoded_size(payload)
        if self.counters.inbound_chunks == 1 or self.counters.inbound_chunks % 500 == 0:
            LOGGER.debug(
                "Twilio->Realtime: chunks=%d bytes=%d",
                self.counters.inbound_chunks,
                self.counters.inbound_bytes,
            )
        return True

    async def forward_outbound(self, stream_sid: str | None, payload: str) -> bool:
        if not stream_sid:
            self.counters.outbound_dropped += 1
            LOGGER.debug("Dropping model audio: stream id not known yet")
            return False

        if not await self._call_leg.send_media(stream_sid, payload):
            self.counters.outbound_dropped += 1
            return False

        self.counters.outbound_chunks += 1
        self.counters.outbound_bytes += b64_decoded_size(payload)
        return True

    def _record_inbound_drop(self, why: str) -> None:
        self.counters.inbound_dropped += 1
        if self.counters.inbound_dropped == 1:
            LOGGER.warning("Dropping caller audio (%s)", why)
        else:
            LOGGER.debug("Dropping caller audio (%s); dropped=%d", why, self.counters.inbound_dropped)
