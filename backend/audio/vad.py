"""
A minimal, energy-based Voice Activity Detection (VAD) engine.

Provides a simple RMS-energy confidence score intended for real-time or
streaming audio pipelines. It operates on fixed-size int16 frames and maps
frame energy onto a speaking confidence in [0, 1].
"""

from __future__ import annotations

import numpy as np

from adapters.engines.base import EngineError, VoiceActivityEngine
from audio.pcm import pcm16_to_float32
from spec import ENERGY_VAD_FULL_CONFIDENCE_RMS, ENGINE_FRAME_LENGTH, ENGINE_SAMPLE_RATE_HZ


class EnergyVAD(VoiceActivityEngine):
    """
    Simple energy-based voice-activity engine.

    For each frame, the RMS (root-mean-square) energy of the float samples
    is divided by `full_confidence_rms` and clipped to [0, 1]. A frame at
    or above the reference energy scores 1.0; digital silence scores 0.0.
    """

    def __init__(
        self,
        *,
        full_confidence_rms: float = ENERGY_VAD_FULL_CONFIDENCE_RMS,
        sample_rate: int = ENGINE_SAMPLE_RATE_HZ,
        frame_length: int = ENGINE_FRAME_LENGTH,
    ) -> None:
        if full_confidence_rms <= 0:
            raise ValueError("full_confidence_rms must be > 0")
        self._reference = full_confidence_rms
        self._sample_rate = sample_rate
        self._frame_length = frame_length

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_length(self) -> int:
        return self._frame_length

    def process(self, frame: np.ndarray) -> float:
        """
        Score a single audio frame.

        Args:
            frame:
                A 1D int16 array of exactly frame_length samples.

        Returns:
            Confidence in [0.0, 1.0].

        Raises:
            EngineError if the frame has the wrong length.
        """
        if len(frame) != self._frame_length:
            raise EngineError(
                f"EnergyVAD expected {self._frame_length} samples, got {len(frame)}"
            )
        f32 = pcm16_to_float32(frame)
        rms = float(np.sqrt(np.mean(np.square(f32))))
        return min(1.0, rms / self._reference)
