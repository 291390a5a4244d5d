"""
Per-speaker conversation snapshot.

reduce() takes one of these and returns the next; the runtime swaps its
reference after every event. Audio never lives here: the UtteranceBuffer
is owned by the runtime and only its frame count is mirrored, so
snapshots stay cheap to copy and to compare in tests.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.state import ConversationState
from spec import DEFAULT_LISTENING_POLICY, ListeningPolicy


@dataclass(frozen=True)
class ConversationSnapshot:
    """Immutable snapshot of one speaker session's control state."""

    speaker_id: int

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: ConversationState = ConversationState.DETECTION

    # Set once the inbound channel disconnected; no further transitions
    closed: bool = False

    # ------------------------------------------------------------------
    # Listening bookkeeping (monotonic ms)
    # ------------------------------------------------------------------
    listening_since_ms: int | None = None
    not_speaking_since_ms: int | None = None

    # Frames appended to the utterance buffer since it was last cleared
    buffered_frames: int = 0

    # ------------------------------------------------------------------
    # Counters (observability)
    # ------------------------------------------------------------------
    wake_detections: int = 0
    utterances_dispatched: int = 0
    false_triggers: int = 0

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------
    policy: ListeningPolicy = field(default_factory=lambda: DEFAULT_LISTENING_POLICY)
