"""
Inputs to the conversation reducer.

The speaker runtime turns engine results, arbitration outcomes, response
polling and control requests into these records. Each carries the
millisecond timestamp at which the runtime observed it; the reducer never
reads a clock of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Event discriminants. The reducer either handles or logs-and-ignores
    each one in every conversation state.
    """

    # Detection
    WAKE_WORD_DETECTED = "WAKE_WORD_DETECTED"

    # Attention arbitration outcome
    ATTENTION_GRANTED = "ATTENTION_GRANTED"
    ATTENTION_DENIED = "ATTENTION_DENIED"

    # Listening
    SPEECH_FRAME = "SPEECH_FRAME"

    # Responding
    RESPONSE_FINISHED = "RESPONSE_FINISHED"

    # Engines
    ENGINE_FAILED = "ENGINE_FAILED"

    # Control / lifecycle
    STOP_REQUESTED = "STOP_REQUESTED"
    DISCONNECTED = "DISCONNECTED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    event_type is passed explicitly by the producer; ts_ms comes from the
    runtime clock (a fake clock in tests).
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Concrete Events
# =============================================================================

@dataclass(frozen=True)
class WakeWordDetected(Event):
    """Wake-word engine matched on the current frame."""
    keyword_index: int = 0


@dataclass(frozen=True)
class AttentionGranted(Event):
    """try_acquire() succeeded for this session."""


@dataclass(frozen=True)
class AttentionDenied(Event):
    """try_acquire() failed: another session holds attention."""


@dataclass(frozen=True, eq=False)
class SpeechFrame(Event):
    """
    One scored frame while listening.

    pcm is the mono int16 frame; confidence is the VAD score in [0, 1].
    Compared by identity (numpy arrays have no scalar equality).
    """
    confidence: float = 0.0
    pcm: np.ndarray | None = None


@dataclass(frozen=True)
class ResponseFinished(Event):
    """
    The backend finished its reply (or gave no answer) and playback is idle.

    continue_conversation: the session still owns attention and the
    exchange neither ended the conversation nor came back empty.
    """
    continue_conversation: bool = False


@dataclass(frozen=True)
class EngineFailed(Event):
    """A wake-word or VAD engine raised on the current frame."""
    engine: str = ""
    reason: str = ""


@dataclass(frozen=True)
class StopRequested(Event):
    """External request to abandon the current conversation."""


@dataclass(frozen=True)
class Disconnected(Event):
    """Inbound channel delivered Disconnect; the session loop ends."""
