"""
Inbound audio event primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np


@dataclass(frozen=True)
class AudioPacket:
    """
    One decoded transport packet for a single speaker.

    samples:
        Interleaved PCM16 samples (L, R, L, R, ...) at the native
        transport rate (spec.NATIVE_SAMPLE_RATE_HZ). Length need not be
        a multiple of the channel count; leftovers stay queued until the
        next packet completes them.
    """
    samples: np.ndarray


@dataclass(frozen=True)
class Disconnect:
    """End of a speaker's stream. The owning session loop exits on this."""


InboundAudioEvent = Union[AudioPacket, Disconnect]
