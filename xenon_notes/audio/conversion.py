"""Sample format conversion and level metering."""

from math import gcd

import numpy as np
from scipy.signal import resample_poly

TARGET_SAMPLE_RATE = 16000


def rms_level(samples: np.ndarray) -> float:
    """Root-mean-square of a float buffer (all channels)."""
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert [-1, 1] floats to little-endian int16, clipping out-of-range values."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype('<i2')


def downmix(samples: np.ndarray) -> np.ndarray:
    """Average (frames, channels) down to a mono float64 vector."""
    mono = samples.mean(axis=1) if samples.ndim == 2 else samples
    return mono.astype(np.float64, copy=False)


class StreamResampler:
    """Polyphase resampler that carries filter context across buffers.

    Resampling each buffer on its own puts filter edge transients at every
    buffer boundary and rounds every buffer's output length up. This class
    emits only the output samples whose filter support has fully arrived and
    keeps the input history the next call needs, so the concatenated output
    equals ``resample_poly`` over the whole stream. The last few samples are
    held back until more input arrives or ``flush()`` is called.
    """

    def __init__(self, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE):
        self.source_rate = int(source_rate)
        self.target_rate = int(target_rate)
        divisor = gcd(self.source_rate, self.target_rate)
        self.up = self.target_rate // divisor
        self.down = self.source_rate // divisor
        # Input samples either side of an output sample read by resample_poly's filter
        self.margin = -(-10 * max(self.up, self.down) // self.up) + 1

        self._history = np.zeros(0, dtype=np.float64)
        self._offset = 0  # absolute input index of _history[0]
        self._emitted = 0  # absolute output samples produced so far

    @property
    def passthrough(self) -> bool:
        return self.up == self.down

    def process(self, mono: np.ndarray) -> np.ndarray:
        """Feed mono input, return every output sample that is now final."""
        mono = np.asarray(mono, dtype=np.float64)
        if self.passthrough:
            return mono

        self._history = np.concatenate([self._history, mono])
        end = self._offset + len(self._history)
        if end <= self.margin:
            return np.zeros(0, dtype=np.float64)
        return self._emit((end - self.margin) * self.up // self.down + 1)

    def flush(self) -> np.ndarray:
        """Return the held-back tail, treating the stream as ended."""
        if self.passthrough:
            return np.zeros(0, dtype=np.float64)
        end = self._offset + len(self._history)
        return self._emit(-(-end * self.up // self.down))

    def _window_start(self, output_index: int) -> int:
        # Multiples of `down` keep window outputs on the stream's output grid
        position = output_index * self.down // self.up - self.margin
        return max(0, position // self.down * self.down)

    def _emit(self, ready: int) -> np.ndarray:
        if ready <= self._emitted:
            return np.zeros(0, dtype=np.float64)

        start = self._window_start(self._emitted)
        window = self._history[start - self._offset:]
        base = start // self.down * self.up
        out = resample_poly(window, self.up, self.down)[self._emitted - base:ready - base]
        self._emitted = ready

        keep_from = self._window_start(self._emitted)
        self._history = self._history[keep_from - self._offset:]
        self._offset = keep_from
        return out


def to_linear16(samples: np.ndarray, resampler: StreamResampler) -> bytes:
    """Downmix to mono, resample, and encode as 16-bit little-endian PCM.

    Args:
        samples: float array shaped (frames,) or (frames, channels)
        resampler: Stream resampler for the samples' rate

    Returns:
        Raw PCM bytes ready to send over the wire (empty while the
        resampler is still collecting filter context)
    """
    return float_to_pcm16(resampler.process(downmix(samples))).tobytes()
