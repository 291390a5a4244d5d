"""
Authoritative conversation state enumeration.

Rules:
- This enum defines ONLY the per-speaker control states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConversationState(str, Enum):
    """
    Control states for a single speaker's session.

    DETECTION:
        Frames go to the wake-word engine; nothing is buffered.
    LISTENING:
        Session holds attention; frames are scored and buffered until the
        speaker falls silent.
    RESPONDING:
        Utterance dispatched; frames are discarded while the backend
        composes and speaks its reply.
    """

    DETECTION = "DETECTION"
    LISTENING = "LISTENING"
    RESPONDING = "RESPONDING"
