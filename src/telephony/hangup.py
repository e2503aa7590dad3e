from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from telephony.errors import CallControlError

LOGGER = logging.getLogger(__name__)


class HangupCoordinator:
    """Graceful end of a call: goodbye turn, bounded wait, then termination.

    ``initiate`` asks the model for a final utterance and arms a grace timer.
    ``finalize`` runs at most once: it completes the call through the carrier's
    REST API when possible and then closes the session regardless of the outcome.
    """

    def __init__(
        self,
        *,
        request_final_turn: Callable[[str], Awaitable[object]],
        close_session: Callable[[], Awaitable[None]],
        call_control=None,
        call_sid: Callable[[], str | None] = lambda: None,
        grace_seconds: float = 2.0,
        farewell: str = "Thank you for calling.",
    ) -> None:
        self._request_final_turn = request_final_turn
        self._close_session = close_session
        self._call_control = call_control
        self._call_sid = call_sid
        self._grace_seconds = grace_seconds
        self._farewell = farewell
        self._pending = False
        self._grace_task: asyncio.Task | None = None
        self._finalize_task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def finalized(self) -> bool:
        return self._finalize_task is not None and self._finalize_task.done()

    def goodbye_text(self, reason: str | None) -> str:
        return f"Goodbye. {(reason or '').strip() or self._farewell}"

    async def initiate(self, reason: str | None = None) -> bool:
        if self._pending:
            LOGGER.info("End call already pending; ignoring duplicate request")
            return False
        self._pending = True

        text = self.goodbye_text(reason)
        LOGGER.info("Hangup initiated (reason=%r); requesting goodbye turn", reason)
        # Armed first so a stalled goodbye send cannot keep the call open.
        if self._finalize_task is None:
            self._grace_task = asyncio.create_task(self._finalize_after_grace())
        await self._request_final_turn(text)
        return True

    async def finalize(self) -> None:
        if self._finalize_task is None:
            self._finalize_task = asyncio.create_task(self._finalize_once())
        # Shielded so a cancelled caller (e.g. the grace timer) cannot interrupt teardown.
        await asyncio.shield(self._finalize_task)

    def cancel(self) -> None:
        task = self._grace_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _finalize_after_grace(self) -> None:
        await asyncio.sleep(self._grace_seconds)
        LOGGER.info("Goodbye grace period (%.1fs) elapsed; finalizing", self._grace_seconds)
        await self.finalize()

    async def _finalize_once(self) -> None:
        call_sid = self._call_sid()
        if self._call_control is not None and call_sid:
            try:
                await self._call_control.complete_call(call_sid)
            except CallControlError as exc:
                LOGGER.warning("REST hangup failed: %s", exc.detail)
        else:
            LOGGER.debug("Skipping REST hangup (call_sid=%s, control=%s)", call_sid, self._call_control is not None)

        await self._close_session()
