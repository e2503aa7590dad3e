from __future__ import annotations

import asyncio
import logging

LOGGER = logging.getLogger(__name__)


class AdmissionGate:
    """Bounds the number of live call sessions.

    The counter is the only state shared between calls, so every read-modify-write
    happens under a single lock owned by the gate.
    """

    def __init__(self, max_sessions: int) -> None:
        if max_sessions < 0:
            raise ValueError("max_sessions must be >= 0")
        self._capacity = max_sessions
        self._active = 0
        self._total_admitted = 0
        self._total_rejected = 0
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    @property
    def total_admitted(self) -> int:
        return self._total_admitted

    @property
    def total_rejected(self) -> int:
        return self._total_rejected

    async def try_acquire(self) -> bool:
        async with self._lock:
            if self._active >= self._capacity:
                self._total_rejected += 1
                LOGGER.warning(
                    "Rejecting call: active=%d >= max=%d", self._active, self._capacity
                )
                return False
            self._active += 1
            self._total_admitted += 1
            LOGGER.info("Call admitted; active=%d/%d", self._active, self._capacity)
            return True

    async def release(self) -> None:
        async with self._lock:
            self._active = max(0, self._active - 1)
            LOGGER.info("Call released; active=%d/%d", self._active, self._capacity)
