"""
Bounded utterance buffer and the packaged utterance handed to the backend.

- Depth measured in seconds (not frame count)
- Explicit drop behavior: frames that would exceed max_duration_s are
  dropped (newest) and counted
- Deterministic, synchronous behavior
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque

import numpy as np

from audio.pcm import encode_wav
from spec import MAX_UTTERANCE_S, frames_to_ms


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0


@dataclass(frozen=True)
class Utterance:
    """
    One complete spoken utterance, ready for transcription.

    samples:
        Mono int16 samples at sample_rate_hz.
    """
    speaker_id: int
    samples: np.ndarray
    sample_rate_hz: int

    @property
    def duration_ms(self) -> float:
        return frames_to_ms(len(self.samples), self.sample_rate_hz)

    def to_wav(self) -> bytes:
        """Render the samples as a RIFF/WAV (PCM_16) byte string."""
        return encode_wav(self.samples, self.sample_rate_hz)


class UtteranceBuffer:
    """
    Growable mono PCM buffer owned by exactly one speaker session.

    Drop rule:
    - append() drops the NEW frame if it would push the buffered duration
      past max_duration_s
    """

    def __init__(self, *, sample_rate_hz: int, max_duration_s: float = MAX_UTTERANCE_S) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if max_duration_s <= 0:
            raise ValueError("max_duration_s must be > 0")

        self._sample_rate_hz = sample_rate_hz
        self._max_samples = int(max_duration_s * sample_rate_hz)
        self._chunks: Deque[np.ndarray] = deque()
        self._num_samples = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core operations
    # -------------------------

    def append(self, frame: np.ndarray) -> bool:
        """
        Append one mono frame.

        Returns:
            True if appended
            False if dropped
        """
        if self._num_samples + len(frame) > self._max_samples:
            self.drops.overflow += 1
            return False

        self._chunks.append(np.asarray(frame, dtype=np.int16))
        self._num_samples += len(frame)
        return True

    def clear(self) -> None:
        """
        Drop all buffered audio without counting it as drops.
        """
        self._chunks.clear()
        self._num_samples = 0

    def drain(self) -> np.ndarray:
        """
        Return all buffered samples as one array and empty the buffer.
        """
        if not self._chunks:
            return np.zeros(0, dtype=np.int16)
        out = np.concatenate(list(self._chunks))
        self.clear()
        return out

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return self._num_samples

    def is_empty(self) -> bool:
        """Check if the buffer is empty."""
        return self._num_samples == 0

    def duration_seconds(self) -> float:
        """Buffered duration in seconds."""
        return self._num_samples / self._sample_rate_hz

    def snapshot(self) -> dict[str, float | int]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "samples": self._num_samples,
            "frames": len(self._chunks),
            "duration_s": self.duration_seconds(),
            "dropped_overflow": self.drops.overflow,
        }
