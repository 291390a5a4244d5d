"""PCM conversion utilities."""

from __future__ import annotations

import io

import numpy as np
import soundfile as sf

from spec import NATIVE_CHANNELS, PCM16_MAX, PCM16_MIN, PCM16_SCALE


def pcm16le_to_samples(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian bytes to an int16 sample array.

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    return np.frombuffer(pcm_bytes, dtype="<i2").astype(np.int16)


def deinterleave_to_float(samples: np.ndarray, channels: int = NATIVE_CHANNELS) -> np.ndarray:
    """
    Split interleaved int16 samples into a (channels, frames) float64 array.

    Each sample is scaled by 1/32768 and clamped to [-1.0, 1.0].
    Any incomplete trailing frame is dropped.
    """
    frames = len(samples) // channels
    interleaved = np.asarray(samples[: frames * channels], dtype=np.float64) / PCM16_SCALE
    planar = interleaved.reshape(frames, channels).T
    return np.clip(planar, -1.0, 1.0)


def mix_to_mono_pcm16(planar: np.ndarray) -> np.ndarray:
    """
    Average a (channels, frames) float array to mono and scale to int16.

    The float result is scaled by 32768 and clamped to the int16 range
    so full-scale positive input cannot wrap around.
    """
    mono = planar.mean(axis=0)
    scaled = np.clip(mono * PCM16_SCALE, PCM16_MIN, PCM16_MAX)
    return scaled.astype(np.int16)


def pcm16_to_float32(samples: np.ndarray) -> np.ndarray:
    """Convert int16 samples to float32 in [-1.0, 1.0)."""
    return samples.astype(np.float32) / np.float32(PCM16_SCALE)


def encode_wav(samples: np.ndarray, sample_rate_hz: int) -> bytes:
    """
    Package mono int16 samples as a RIFF/WAV (PCM_16) byte string.

    Used to hand a complete utterance to the conversational backend in a
    self-describing container.
    """
    buf = io.BytesIO()
    sf.write(buf, np.asarray(samples, dtype=np.int16), sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()
