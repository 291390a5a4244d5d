"""
Attention arbitration across speaker sessions.

Exactly one session at a time may converse with the shared backend. The
arbitrator is the only cross-session shared state besides the backend
handle itself.

Rules:
- try_acquire() never blocks: it fails immediately when another session
  owns attention or the backend handle is busy.
- release_if_owned() by a non-owner is a no-op.
- Single slot, no queue, no fairness guarantees.
- The backend lock is held only for the duration of a backend request
  (respond/reset); stop() and is_responding() bypass it.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from adapters.backend.base import ConversationalBackend
from observability.logger import log_event


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class AttentionArbitrator:
    """Single-slot attention token plus exclusive access to the backend."""

    def __init__(self, backend: ConversationalBackend) -> None:
        self._backend = backend
        self._lock = asyncio.Lock()
        self._owner: int | None = None

    # ------------------------------------------------------------------
    # Attention token
    # ------------------------------------------------------------------

    def try_acquire(self, speaker_id: int) -> bool:
        """
        Attempt to take attention for speaker_id.

        Returns True if the caller now owns attention (re-acquiring an
        already owned token also succeeds).
        """
        if self._owner == speaker_id:
            return True

        if self._owner is not None or self._lock.locked():
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "ATTENTION_DENIED",
                "speaker_id": speaker_id,
                "owner": self._owner,
                "backend_busy": self._lock.locked(),
            })
            return False

        self._owner = speaker_id
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "ATTENTION_ACQUIRED",
            "speaker_id": speaker_id,
        })
        return True

    def release_if_owned(self, speaker_id: int) -> None:
        if self._owner != speaker_id:
            return

        self._owner = None
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "ATTENTION_RELEASED",
            "speaker_id": speaker_id,
        })

    def current_owner(self) -> int | None:
        return self._owner

    def is_owner(self, speaker_id: int) -> bool:
        return self._owner == speaker_id

    # ------------------------------------------------------------------
    # Backend handle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def backend(self) -> AsyncIterator[ConversationalBackend]:
        """Exclusive access to the backend for one request."""
        async with self._lock:
            yield self._backend

    @property
    def backend_busy(self) -> bool:
        return self._lock.locked()

    async def stop_backend(self) -> None:
        await self._backend.stop()

    async def backend_is_responding(self) -> bool:
        return await self._backend.is_responding()
