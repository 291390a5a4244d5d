"""
What a speaker session asks its runtime to do.

The reducer answers every event with a list of these value objects and the
SpeakerRuntime carries them out in order: attention bookkeeping, utterance
buffer edits, backend control, playback cues and decision logs. Nothing here
touches I/O, so reduce() stays a pure function of (snapshot, event).

Concrete commands are frozen dataclasses; command_type is set explicitly on
each one and is what the runtime dispatches on.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from adapters.playback.base import Cue


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """Dispatch keys for SpeakerRuntime._execute_command."""

    # Attention
    ACQUIRE_ATTENTION = "ACQUIRE_ATTENTION"
    RELEASE_ATTENTION = "RELEASE_ATTENTION"

    # Utterance buffer
    APPEND_UTTERANCE = "APPEND_UTTERANCE"
    CLEAR_UTTERANCE = "CLEAR_UTTERANCE"
    DISPATCH_UTTERANCE = "DISPATCH_UTTERANCE"

    # Backend
    RESET_BACKEND = "RESET_BACKEND"
    STOP_BACKEND = "STOP_BACKEND"

    # Playback
    PLAY_CUE = "PLAY_CUE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """Common base; subclasses pin command_type with a default."""

    command_type: CommandType


# =============================================================================
# Attention Commands
# =============================================================================

@dataclass(frozen=True)
class AcquireAttention(Command):
    """
    Non-blocking attempt to take attention.

    The runtime answers with AttentionGranted or AttentionDenied.
    """
    command_type: CommandType = CommandType.ACQUIRE_ATTENTION


@dataclass(frozen=True)
class ReleaseAttention(Command):
    """Release attention if this session owns it (no-op otherwise)."""
    command_type: CommandType = CommandType.RELEASE_ATTENTION


# =============================================================================
# Utterance Commands
# =============================================================================

@dataclass(frozen=True, eq=False)
class AppendUtterance(Command):
    """Append one mono frame to the session's utterance buffer."""
    pcm: np.ndarray
    command_type: CommandType = CommandType.APPEND_UTTERANCE


@dataclass(frozen=True)
class ClearUtterance(Command):
    """Discard the utterance buffer."""
    command_type: CommandType = CommandType.CLEAR_UTTERANCE


@dataclass(frozen=True)
class DispatchUtterance(Command):
    """
    Package the buffer as an Utterance and hand it to the backend on a
    detached task. The buffer is empty afterwards.
    """
    command_type: CommandType = CommandType.DISPATCH_UTTERANCE


# =============================================================================
# Backend Commands
# =============================================================================

@dataclass(frozen=True)
class ResetBackend(Command):
    """Start a fresh backend conversation."""
    command_type: CommandType = CommandType.RESET_BACKEND


@dataclass(frozen=True)
class StopBackend(Command):
    """Preempt the in-flight exchange and stop playback."""
    command_type: CommandType = CommandType.STOP_BACKEND


# =============================================================================
# Playback Commands
# =============================================================================

@dataclass(frozen=True)
class PlayCue(Command):
    """Fire-and-forget playback cue."""
    cue: Cue
    command_type: CommandType = CommandType.PLAY_CUE


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log line; the runtime enriches it with speaker context."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
