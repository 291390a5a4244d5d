# backend/protocol/binary.py
"""
Binary framing helpers for speaker audio ingestion.

Transport → Server (one speaker packet):
    4 bytes  ssrc (u32, little-endian)
    N bytes  PCM16 little-endian, stereo interleaved (L, R, L, R, ...)

N must be non-zero and a whole number of stereo frames.

Usage example:

    frame = decode_ingest_frame(payload)
    await demux.on_voice_packet(frame.ssrc, frame.samples)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

import numpy as np

from audio.pcm import pcm16le_to_samples
from spec import (
    INGEST_SSRC_BYTES,
    NATIVE_CHANNELS,
    PCM16_SAMPLE_WIDTH_BYTES,
    SSRC_MAX,
)


# Bytes per interleaved stereo frame
_BYTES_PER_NATIVE_FRAME = NATIVE_CHANNELS * PCM16_SAMPLE_WIDTH_BYTES


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when a binary packet is truncated, empty, or does not hold a
    whole number of stereo PCM16 frames. The packet must be dropped.
    """


class InvalidSsrc(BinaryProtocolError):
    """
    Raised when an ssrc is outside the u32 range.
    """


# -------------------------
# Low-level helpers
# -------------------------

def _u32_le(value: int) -> bytes:
    return struct.pack("<I", value)


def _read_u32_le(buf: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<I", buf, offset)[0]


# -------------------------
# Ingest frame
# -------------------------

@dataclass(frozen=True, eq=False)
class IngestFrame:
    """
    Decoded speaker packet.

    samples:
        Interleaved stereo int16 samples (even length).
    """
    ssrc: int
    samples: np.ndarray

    @property
    def num_frames(self) -> int:
        return len(self.samples) // NATIVE_CHANNELS


def decode_ingest_frame(payload: bytes) -> IngestFrame:
    """
    Decode a transport→server speaker packet.
    """
    if len(payload) <= INGEST_SSRC_BYTES:
        raise InvalidFrameLength(
            f"ingest frame length {len(payload)} leaves no PCM after the ssrc header"
        )

    pcm_len = len(payload) - INGEST_SSRC_BYTES
    if pcm_len % _BYTES_PER_NATIVE_FRAME != 0:
        raise InvalidFrameLength(
            f"PCM length {pcm_len} is not a multiple of {_BYTES_PER_NATIVE_FRAME}"
        )

    ssrc = _read_u32_le(payload, 0)
    samples = pcm16le_to_samples(payload[INGEST_SSRC_BYTES:])

    return IngestFrame(ssrc=ssrc, samples=samples)


def encode_ingest_frame(*, ssrc: int, samples: np.ndarray) -> bytes:
    """
    Encode a speaker packet (client side / tests).
    """
    if ssrc < 0 or ssrc > SSRC_MAX:
        raise InvalidSsrc(f"Invalid ssrc: {ssrc}")

    pcm = np.asarray(samples, dtype="<i2")
    if pcm.size == 0 or pcm.size % NATIVE_CHANNELS != 0:
        raise InvalidFrameLength(
            f"sample count {pcm.size} is not a non-empty whole number of stereo frames"
        )

    return _u32_le(ssrc) + pcm.tobytes()
