"""WAV writer for a single chunk file."""

import logging
import wave
from pathlib import Path

import numpy as np

from .conversion import float_to_pcm16

logger = logging.getLogger(__name__)


class ChunkFileWriter:
    """Streams float buffers into a 16-bit PCM WAV file."""

    def __init__(self, path: Path, sample_rate: int, channels: int):
        """Open the file for writing.

        Raises:
            OSError, wave.Error: if the file cannot be created
        """
        self.path = Path(path)
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_written = 0

        self._wav = wave.open(str(self.path), 'wb')
        self._wav.setnchannels(channels)
        self._wav.setsampwidth(2)  # 16-bit
        self._wav.setframerate(sample_rate)
        logger.debug(f"Opened chunk file {self.path}")

    def write(self, samples: np.ndarray) -> None:
        self._wav.writeframes(float_to_pcm16(samples).tobytes())
        self.frames_written += int(samples.shape[0])

    def close(self) -> None:
        if self._wav is None:
            return
        try:
            self._wav.close()
        finally:
            self._wav = None
        logger.debug(f"Closed chunk file {self.path} ({self.frames_written} frames)")
