from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from config.settings import get_settings
from telephony.errors import CallControlError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str


def get_twilio_config() -> TwilioConfig | None:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        return None

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
    )


def build_twilio_client(cfg: TwilioConfig):
    from twilio.rest import Client

    return Client(cfg.account_sid, cfg.auth_token)


class TwilioCallControl:
    """Out-of-band control of a live call through the Twilio REST API."""

    def __init__(self, client) -> None:
        self._client = client

    async def complete_call(self, call_sid: str) -> None:
        # The REST client is blocking; keep it off the event loop.
        try:
            await asyncio.to_thread(self._update_status, call_sid, "completed")
        except Exception as exc:
            raise CallControlError(f"Completing call {call_sid} failed: {exc}") from exc
        LOGGER.info("Call %s marked completed via REST", call_sid)

    def _update_status(self, call_sid: str, status: str) -> None:
        self._client.calls(call_sid).update(status=status)


def build_call_control() -> TwilioCallControl | None:
    cfg = get_twilio_config()
    if cfg is None:
        LOGGER.info("Twilio credentials not configured; calls end by closing the media stream only")
        return None
    return TwilioCallControl(build_twilio_client(cfg))
