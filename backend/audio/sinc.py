"""
Fixed-output windowed-sinc resampler (pure).

Purpose:
- Convert planar float audio from one sample rate to another, producing
  exactly `chunk_size` output frames per call.
- The caller asks `input_frames_next()` how many input frames the next call
  needs; that number varies by at most one frame between calls for
  non-integer rate ratios.

Design:
- Band-limited interpolation with a sinc kernel of `sinc_len` taps.
- Cutoff is `f_cutoff` times the lower of the two Nyquist frequencies.
- Kernel is tabulated at `oversampling_factor` points per input sample and
  linearly interpolated between table entries.
- Window is a squared Blackman-Harris window over the kernel span.
- The last `sinc_len` input frames are kept as history, which fixes the
  latency at `sinc_len / 2` input frames.

Deterministic: identical parameters and input produce identical output.
No IO, no timing, no queues.
"""

from __future__ import annotations

import math

import numpy as np
from scipy.signal.windows import blackmanharris

from spec import DEFAULT_SINC_PARAMETERS, SincParameters


def build_kernel_table(
    *,
    sinc_len: int,
    oversampling_factor: int,
    cutoff: float,
) -> np.ndarray:
    """
    Tabulate the windowed sinc kernel over [-sinc_len/2, sinc_len/2].

    Entry i corresponds to distance `i / oversampling_factor - sinc_len / 2`
    (in input samples) between the output position and an input tap.
    """
    points = sinc_len * oversampling_factor + 1
    x = np.linspace(-sinc_len / 2, sinc_len / 2, points)
    window = blackmanharris(points, sym=True) ** 2
    return cutoff * np.sinc(cutoff * x) * window


class SincFixedOutResampler:
    """
    Streaming sinc resampler with a fixed output chunk size.

    Positions are tracked in input-sample coordinates relative to the start
    of the history buffer. Each output frame k of a chunk sits at
    `pos + k * step`, where step = in_rate / out_rate.
    """

    def __init__(
        self,
        *,
        ratio: float,
        chunk_size: int,
        channels: int,
        params: SincParameters = DEFAULT_SINC_PARAMETERS,
    ) -> None:
        """
        Args:
            ratio:
                Output rate divided by input rate (e.g. 16000 / 48000).
            chunk_size:
                Output frames produced by every process() call.
            channels:
                Number of planar channels.
            params:
                Filter length, cutoff and table resolution.
        """
        if ratio <= 0:
            raise ValueError("ratio must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if channels <= 0:
            raise ValueError("channels must be > 0")
        if params.sinc_len < 2 or params.sinc_len % 2 != 0:
            raise ValueError("sinc_len must be an even number >= 2")
        if params.oversampling_factor <= 0:
            raise ValueError("oversampling_factor must be > 0")
        if not 0.0 < params.f_cutoff <= 1.0:
            raise ValueError("f_cutoff must be in (0, 1]")

        self._ratio = ratio
        self._step = 1.0 / ratio
        self._chunk_size = chunk_size
        self._channels = channels
        self._sinc_len = params.sinc_len
        self._half = params.sinc_len // 2
        self._oversampling = params.oversampling_factor

        self._table = build_kernel_table(
            sinc_len=params.sinc_len,
            oversampling_factor=params.oversampling_factor,
            cutoff=params.f_cutoff * min(1.0, ratio),
        )
        # Tap offsets relative to floor(position): tap j = floor(p) + offset
        self._offsets = np.arange(self._sinc_len) - self._half + 1

        self._history = np.zeros((channels, self._sinc_len), dtype=np.float64)
        self._pos = float(self._half)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def ratio(self) -> float:
        return self._ratio

    @property
    def channels(self) -> int:
        return self._channels

    def output_frames_next(self) -> int:
        """Output frames produced by the next process() call."""
        return self._chunk_size

    def input_frames_next(self) -> int:
        """
        Input frames required by the next process() call.

        Enough frames to cover every tap of the last output position in
        the chunk, minus what the history already holds.
        """
        last = self._pos + (self._chunk_size - 1) * self._step
        needed = math.floor(last) + self._half + 1 - self._sinc_len
        return max(needed, 0)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, planar: np.ndarray) -> np.ndarray:
        """
        Resample exactly input_frames_next() frames.

        Args:
            planar: float array of shape (channels, input_frames_next()).

        Returns:
            float64 array of shape (channels, chunk_size).

        Raises:
            ValueError if the input shape does not match the demand.
        """
        expected = self.input_frames_next()
        if planar.shape != (self._channels, expected):
            raise ValueError(
                f"expected input shape {(self._channels, expected)}, got {planar.shape}"
            )

        buf = np.concatenate([self._history, planar], axis=1)

        positions = self._pos + np.arange(self._chunk_size) * self._step
        base = np.floor(positions).astype(np.int64)
        frac = positions - base

        taps = base[:, None] + self._offsets[None, :]
        weights = self._weights(frac[:, None] - self._offsets[None, :])

        out = np.einsum("ckt,kt->ck", buf[:, taps], weights)

        consumed = planar.shape[1]
        self._history = buf[:, -self._sinc_len:].copy()
        self._pos = self._pos + self._chunk_size * self._step - consumed

        return out

    def reset(self) -> None:
        """Drop filter history and return to the initial read position."""
        self._history = np.zeros((self._channels, self._sinc_len), dtype=np.float64)
        self._pos = float(self._half)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _weights(self, dist: np.ndarray) -> np.ndarray:
        """
        Kernel weights for tap distances, linearly interpolated from the
        table and normalized to unity DC gain per output frame.
        """
        idx_f = (dist + self._half) * self._oversampling
        i0 = np.floor(idx_f).astype(np.int64)
        i0 = np.clip(i0, 0, len(self._table) - 1)
        i1 = np.minimum(i0 + 1, len(self._table) - 1)
        t = idx_f - i0

        w = self._table[i0] * (1.0 - t) + self._table[i1] * t
        return w / w.sum(axis=1, keepdims=True)
