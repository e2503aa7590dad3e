"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache
from typing import TYPE_CHECKING

from config.settings import get_settings
from telephony.admission import AdmissionGate

if TYPE_CHECKING:  # pragma: no cover
    from integrations.twilio_client import TwilioCallControl
    from telephony.call_session import CallSession


@lru_cache(maxsize=1)
def _admission_gate() -> AdmissionGate:
    return AdmissionGate(get_settings().max_concurrent_calls)


def get_admission_gate() -> AdmissionGate:
    return _admission_gate()


@lru_cache(maxsize=1)
def _call_control() -> TwilioCallControl | None:
    # Lazy import so the Twilio SDK is only loaded when a call actually needs it.
    from integrations.twilio_client import build_call_control

    return build_call_control()


def get_call_control() -> TwilioCallControl | None:
    return _call_control()


def build_call_session(call_leg) -> CallSession:
    from integrations.openai_realtime import RealtimeSessionClient
    from telephony.call_session import CallSession

    settings = get_settings()
    remote = RealtimeSessionClient(
        url=settings.openai_realtime_url,
        api_key=settings.openai_api_key,
        model=settings.openai_realtime_model,
        instructions=settings.resolved_instructions(),
        greeting=settings.resolved_greeting(),
        voice=settings.openai_realtime_voice,
        renew_interval_s=settings.session_renew_interval_seconds,
    )
    return CallSession(
        call_leg,
        remote,
        call_control=get_call_control(),
        hangup_grace_seconds=settings.hangup_grace_seconds,
        farewell=settings.farewell_message,
    )


def get_call_session_factory() -> Callable[..., CallSession]:
    return build_call_session
