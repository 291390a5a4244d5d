"""
Conversational backend contract.

Purpose:
- Define the interface the speaker runtime uses to hand over a complete
  utterance and to track the backend's response lifecycle.
- Keep attention arbitration, endpointing and cue playback OUT of the
  backend.

Rules:
- respond() returns a BackendReply, or None for "no answer".
- Vendor failures MUST surface as BackendError (never vendor exceptions).
- stop() is best-effort and idempotent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from audio.utterance import Utterance


class BackendError(RuntimeError):
    """Raised when the conversational backend fails to produce a reply."""


@dataclass(frozen=True)
class BackendReply:
    """
    Outcome of one exchange.

    text:
        Content to speak back to the user (may be empty).
    end_conversation:
        True when the backend decided the exchange is over; attention is
        released once the reply has been handed to playback.
    """
    text: str
    end_conversation: bool = False


class ConversationalBackend(ABC):
    """
    Turn-based transcription + response backend shared by every speaker.

    Access to respond()/reset() is serialized by the AttentionArbitrator's
    backend lock; stop()/is_responding() are lock-free control signals.
    """

    @abstractmethod
    async def respond(self, utterance: Utterance) -> BackendReply | None:
        """
        Transcribe the utterance and compose a reply.

        Returns:
            BackendReply, or None when there is nothing to say
            (empty transcript, empty reply, stopped).

        Raises:
            BackendError on request failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def is_responding(self) -> bool:
        """True while a respond() call is still in flight."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """Preempt an in-flight respond() call."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self) -> None:
        """Start a fresh conversation (drop accumulated context)."""
        raise NotImplementedError
