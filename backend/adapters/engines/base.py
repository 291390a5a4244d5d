"""
Detection engine contracts (wake word + voice activity).

Purpose:
- Define the frame-level interfaces the speaker runtime drives.
- Keep vendor model details OUT of orchestration.

Rules:
- Engines are synchronous and operate on one fixed-size mono int16 frame.
- Vendor failures MUST surface as EngineError; the runtime logs them and
  skips the frame.
- No orchestration, no timing, no attention handling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class EngineError(RuntimeError):
    """Raised when a wake-word or voice-activity engine fails on a frame."""


class WakeWordEngine(ABC):
    """
    Keyword classifier over fixed-size frames.
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Sample rate (Hz) the engine expects."""
        raise NotImplementedError

    @property
    @abstractmethod
    def frame_length(self) -> int:
        """Samples per frame the engine expects."""
        raise NotImplementedError

    @abstractmethod
    def process(self, frame: np.ndarray) -> int:
        """
        Classify one frame.

        Returns:
            Index of the detected keyword (>= 0), or -1 for no match.

        Raises:
            EngineError on failure.
        """
        raise NotImplementedError


class VoiceActivityEngine(ABC):
    """
    Continuous speaking-confidence classifier over fixed-size frames.
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Sample rate (Hz) the engine expects."""
        raise NotImplementedError

    @property
    @abstractmethod
    def frame_length(self) -> int:
        """Samples per frame the engine expects."""
        raise NotImplementedError

    @abstractmethod
    def process(self, frame: np.ndarray) -> float:
        """
        Score one frame.

        Returns:
            Speaking confidence in [0.0, 1.0].

        Raises:
            EngineError on failure.
        """
        raise NotImplementedError


def ensure_compatible(wake: WakeWordEngine, vad: VoiceActivityEngine) -> None:
    """
    Both engines consume the same resampled frames, so they must agree on
    sample rate and frame length.

    Raises:
        ValueError if they do not.
    """
    if wake.sample_rate != vad.sample_rate:
        raise ValueError(
            f"engine sample rates differ (wake={wake.sample_rate}, vad={vad.sample_rate})"
        )
    if wake.frame_length != vad.frame_length:
        raise ValueError(
            f"engine frame lengths differ (wake={wake.frame_length}, vad={vad.frame_length})"
        )
