"""
Per-speaker frame resampler.

Purpose:
- Turn a variable-cadence stream of interleaved stereo PCM16 packets at the
  native transport rate into fixed-size mono PCM16 frames at the rate the
  detection engines expect.

Invariants:
- Never emits a partial frame: a frame is produced only once the queued
  input covers SincFixedOutResampler.input_frames_next() frames.
- One frame per sufficient accumulation (no duplication).
- Starvation (no event within the timeout) injects a fixed quantity of
  silence instead of blocking indefinitely, keeping the frame cadence
  aligned with wall-clock time while the transport pauses.
- Disconnect is end-of-stream: next_frame() returns None, forever after.
"""

from __future__ import annotations

import asyncio

import numpy as np

from audio.frames import AudioPacket, Disconnect, InboundAudioEvent
from audio.pcm import deinterleave_to_float, mix_to_mono_pcm16
from audio.sinc import SincFixedOutResampler
from spec import (
    DEFAULT_SINC_PARAMETERS,
    NATIVE_CHANNELS,
    NATIVE_SAMPLE_RATE_HZ,
    SILENCE_INJECT_FRAMES,
    STARVATION_TIMEOUT_MS,
    SincParameters,
)


class FrameResampler:
    """
    Owns one speaker's inbound channel, sample queue and filter state.

    The queue holds interleaved int16 samples; leftovers that do not yet
    form a complete demand stay queued for the next call.
    """

    def __init__(
        self,
        channel: asyncio.Queue[InboundAudioEvent],
        *,
        sample_rate_hz: int,
        frame_length: int,
        native_sample_rate_hz: int = NATIVE_SAMPLE_RATE_HZ,
        channels: int = NATIVE_CHANNELS,
        starvation_timeout_ms: int = STARVATION_TIMEOUT_MS,
        silence_inject_frames: int = SILENCE_INJECT_FRAMES,
        params: SincParameters = DEFAULT_SINC_PARAMETERS,
    ) -> None:
        if starvation_timeout_ms <= 0:
            raise ValueError("starvation_timeout_ms must be > 0")
        if silence_inject_frames <= 0:
            raise ValueError("silence_inject_frames must be > 0")

        self._channel = channel
        self._channels = channels
        self._timeout_s = starvation_timeout_ms / 1000.0
        self._silence = np.zeros(silence_inject_frames * channels, dtype=np.int16)
        self._pending = np.zeros(0, dtype=np.int16)
        self._closed = False

        self._resampler = SincFixedOutResampler(
            ratio=sample_rate_hz / native_sample_rate_hz,
            chunk_size=frame_length,
            channels=channels,
            params=params,
        )

        self.silence_injections: int = 0
        self.frames_emitted: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def push(self, event: InboundAudioEvent) -> None:
        """
        Deliver an inbound event to this resampler's channel.

        Suspends while the bounded channel is full, which preserves
        per-speaker ordering.
        """
        await self._channel.put(event)

    async def next_frame(self) -> np.ndarray | None:
        """
        Return the next fixed-size mono int16 frame.

        Suspends until enough input has accumulated (injecting silence on
        starvation). Returns None once the stream has disconnected.
        """
        frames_needed = self._resampler.input_frames_next()
        samples_needed = frames_needed * self._channels

        if not await self._fill(samples_needed):
            return None

        chunk = self._pending[:samples_needed]
        self._pending = self._pending[samples_needed:]

        resampled = self._resampler.process(deinterleave_to_float(chunk, self._channels))
        self.frames_emitted += 1
        return mix_to_mono_pcm16(resampled)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_frames(self) -> int:
        """Whole native frames currently queued."""
        return len(self._pending) // self._channels

    def input_frames_next(self) -> int:
        return self._resampler.input_frames_next()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fill(self, samples_needed: int) -> bool:
        """
        Read events until the queue holds samples_needed samples.

        Returns False on disconnect.
        """
        if self._closed:
            return False

        while len(self._pending) < samples_needed:
            try:
                event = await asyncio.wait_for(self._channel.get(), timeout=self._timeout_s)
            except asyncio.TimeoutError:
                self._pending = np.concatenate([self._pending, self._silence])
                self.silence_injections += 1
                continue

            if isinstance(event, Disconnect):
                self._closed = True
                return False

            if isinstance(event, AudioPacket) and len(event.samples):
                self._pending = np.concatenate(
                    [self._pending, np.asarray(event.samples, dtype=np.int16)]
                )

        return True
