"""
Runtime execution context.

Provides SpeakerRuntime with the imperative collaborators it needs for
command execution and side effects (engines, attention, playback).

This module contains:
- A plain bundle of collaborators shared by every speaker session
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from dataclasses import dataclass, field

from adapters.engines.base import VoiceActivityEngine, WakeWordEngine, ensure_compatible
from adapters.playback.base import PlaybackSink
from orchestrator.attention import AttentionArbitrator
from spec import DEFAULT_LISTENING_POLICY, MAX_UTTERANCE_S, ListeningPolicy


@dataclass(frozen=True)
class RuntimeExecutionContext:
    """
    Collaborators for one speaker runtime.

    Runtime is allowed to:
    - Drive the engines frame by frame
    - Acquire / release attention and use the backend through the arbitrator
    - Fire playback cues

    Runtime is NOT allowed to:
    - Bypass the arbitrator to reach the backend
    """

    arbitrator: AttentionArbitrator
    wake: WakeWordEngine
    vad: VoiceActivityEngine
    playback: PlaybackSink
    policy: ListeningPolicy = field(default_factory=lambda: DEFAULT_LISTENING_POLICY)
    max_utterance_s: float = MAX_UTTERANCE_S

    def __post_init__(self) -> None:
        ensure_compatible(self.wake, self.vad)

    @property
    def sample_rate_hz(self) -> int:
        return self.wake.sample_rate

    @property
    def frame_length(self) -> int:
        return self.wake.frame_length
