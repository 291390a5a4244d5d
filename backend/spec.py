"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# Transport Audio Format (PCM16 stereo interleaved @ 48kHz)
# =============================================================================

NATIVE_SAMPLE_RATE_HZ: Final[int] = 48_000
NATIVE_CHANNELS: Final[int] = 2
PCM16_SAMPLE_WIDTH_BYTES: Final[int] = 2
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767
PCM16_SCALE: Final[float] = 32768.0

# =============================================================================
# Engine Audio Format (mono @ 16kHz, engine-defined frame length)
# =============================================================================

ENGINE_SAMPLE_RATE_HZ: Final[int] = 16_000
ENGINE_FRAME_LENGTH: Final[int] = 512

# openwakeword expects 80 ms chunks at 16 kHz
OPENWAKEWORD_FRAME_LENGTH: Final[int] = 1280

# =============================================================================
# Sinc Resampler Parameters
# =============================================================================

SINC_LEN: Final[int] = 256
SINC_F_CUTOFF: Final[float] = 0.95
SINC_OVERSAMPLING_FACTOR: Final[int] = 256

# =============================================================================
# Starvation / Silence Injection
# =============================================================================

# Bounded wait for the next inbound event before silence is injected
STARVATION_TIMEOUT_MS: Final[int] = 100

# Injected silence covers exactly one timeout interval of native audio
SILENCE_INJECT_FRAMES: Final[int] = (NATIVE_SAMPLE_RATE_HZ * STARVATION_TIMEOUT_MS) // 1000

# =============================================================================
# Listening / Endpointing Policy
# =============================================================================

VAD_SPEAKING_THRESHOLD: Final[float] = 0.75
SILENCE_WINDOW_MS: Final[int] = 3_000
MIN_UTTERANCE_MS: Final[int] = 500

# Cap on buffered utterance audio; frames beyond this are dropped (newest)
MAX_UTTERANCE_S: Final[float] = 60.0

# =============================================================================
# Responding
# =============================================================================

RESPONDING_POLL_MS: Final[int] = 250

# =============================================================================
# Ingestion
# =============================================================================

SPEAKER_CHANNEL_CAPACITY: Final[int] = 32

# Binary transport frame: 4B ssrc (u32 LE) + interleaved PCM16 payload
INGEST_SSRC_BYTES: Final[int] = 4
SSRC_MAX: Final[int] = 2**32 - 1

# =============================================================================
# Energy VAD
# =============================================================================

# RMS (float, full scale = 1.0) that maps to a confidence of 1.0
ENERGY_VAD_FULL_CONFIDENCE_RMS: Final[float] = 0.05

# =============================================================================
# Wake Word
# =============================================================================

WAKEWORD_SCORE_THRESHOLD: Final[float] = 0.5

# =============================================================================
# Conversation Context
# =============================================================================

MAX_CONTEXT_TURNS: Final[int] = 8
MAX_CONTEXT_CHARS: Final[int] = 6_000

# Trailing directive marker in backend replies (e.g. '@{"tool": "end_conversation"}')
TOOL_DIRECTIVE_MARKER: Final[str] = "@"
END_CONVERSATION_TOOL: Final[str] = "end_conversation"

# =============================================================================
# Helper Functions
# =============================================================================

def frames_to_ms(num_frames: int, sample_rate_hz: int) -> float:
    """
    Convert a number of sample frames to milliseconds.

    Defensive behavior:
    - Non-positive input returns 0.0 instead of propagating an error.
    """
    if num_frames <= 0 or sample_rate_hz <= 0:
        return 0.0
    return num_frames * 1000.0 / sample_rate_hz


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class SincParameters:
    """
    Immutable bundle describing the sinc interpolation filter.

    This is a convenience wrapper for passing filter settings around;
    it is NOT a second source of truth.
    """
    sinc_len: int = SINC_LEN
    f_cutoff: float = SINC_F_CUTOFF
    oversampling_factor: int = SINC_OVERSAMPLING_FACTOR


@dataclass(frozen=True)
class ListeningPolicy:
    """
    Tunable endpointing thresholds carried by each session.

    The false-trigger guard (min_utterance_ms) is a heuristic, so every
    value here may be overridden from configuration.
    """
    vad_threshold: float = VAD_SPEAKING_THRESHOLD
    silence_window_ms: int = SILENCE_WINDOW_MS
    min_utterance_ms: int = MIN_UTTERANCE_MS
    responding_poll_ms: int = RESPONDING_POLL_MS


DEFAULT_SINC_PARAMETERS: Final[SincParameters] = SincParameters()
DEFAULT_LISTENING_POLICY: Final[ListeningPolicy] = ListeningPolicy()
