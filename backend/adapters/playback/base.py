"""
Playback collaborator contract.

Purpose:
- Fire-and-forget audio cues and speech output toward the voice channel.

Rules:
- Every method except is_speaking() is synchronous and non-blocking; the
  speaker frame loop must never wait on playback.
- No orchestration logic, no attention handling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class Cue(str, Enum):
    """Kinds of playback requests."""

    ACKNOWLEDGE = "ACKNOWLEDGE"
    WAITING = "WAITING"
    SPEAK = "SPEAK"
    STOP = "STOP"


@dataclass(frozen=True)
class PlaybackCue:
    """One playback request, tagged with the speaker it concerns."""
    cue: Cue
    speaker_id: int | None = None
    text: str | None = None

    def to_message(self) -> dict[str, object]:
        """JSON-ready representation for the transport bridge."""
        msg: dict[str, object] = {
            "type": "CUE",
            "cue": self.cue.value,
            "speaker_id": self.speaker_id,
        }
        if self.text is not None:
            msg["text"] = self.text
        return msg


class PlaybackSink(ABC):
    """
    Output side of the conversation: acknowledgement cue, waiting tone,
    synthesized speech.
    """

    @abstractmethod
    def acknowledge(self, speaker_id: int) -> None:
        """Play the wake acknowledgement cue."""
        raise NotImplementedError

    @abstractmethod
    def start_waiting(self, speaker_id: int) -> None:
        """Start the looping 'composing response' tone."""
        raise NotImplementedError

    @abstractmethod
    def speak(self, speaker_id: int, text: str) -> None:
        """Synthesize and play the response text (replaces the tone)."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Stop whatever is playing."""
        raise NotImplementedError

    @abstractmethod
    def is_speaking(self) -> bool:
        """True while response speech is still playing."""
        raise NotImplementedError
