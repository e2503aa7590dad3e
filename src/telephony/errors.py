"""Domain-specific exceptions for the call relay.

Safe to import from the API layer without pulling in the websocket or Twilio clients.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class RealtimeConnectionError(RelayError):
    default_detail = "Realtime session could not be opened."


class CallControlError(RelayError):
    default_detail = "Call control request failed."
