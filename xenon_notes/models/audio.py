"""Audio-related data models."""

from dataclasses import dataclass

import numpy as np


@dataclass
class AudioStats:
    """Audio recording statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    channels: int
    frames_per_buffer: int
    total_buffers: int
    audio_level: float


@dataclass
class AudioBuffer:
    """One block of float32 PCM delivered by the capture engine.

    ``samples`` has shape ``(frames, channels)`` with values in [-1.0, 1.0].
    """
    samples: np.ndarray
    sample_rate: int
    channels: int
    sequence_number: int
    timestamp: float  # Unix timestamp when the buffer was read

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Duration of this buffer in seconds."""
        return self.frame_count / float(self.sample_rate)
