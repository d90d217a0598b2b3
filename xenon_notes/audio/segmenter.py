"""Chunk segmenter: splits the buffer stream into fixed-duration chunk files."""

import logging
import wave
from typing import Callable, Optional

from ..models.audio import AudioBuffer
from ..models.recording import Chunk, ChunkStatus, Recording
from ..storage.file_manager import FileManager
from .chunk_writer import ChunkFileWriter

logger = logging.getLogger(__name__)

WriterFactory = Callable[..., ChunkFileWriter]


class ChunkSegmenter:
    """Writes every buffer to the open chunk, rolling over at buffer boundaries.

    Timing is derived from frame counts, so a chunk's duration is exactly the
    audio delivered to it and the chunk durations of a recording sum to its
    total duration.
    """

    def __init__(self,
                 recording: Recording,
                 file_manager: FileManager,
                 chunk_duration_seconds: float = 30.0,
                 writer_factory: WriterFactory = ChunkFileWriter):
        if chunk_duration_seconds <= 0:
            raise ValueError("chunk_duration_seconds must be positive")
        self.recording = recording
        self.file_manager = file_manager
        self.chunk_duration_seconds = chunk_duration_seconds
        self.writer_factory = writer_factory

        self.sample_rate: Optional[int] = None
        self.channels: Optional[int] = None
        self.total_frames = 0
        self._chunk_start_frame = 0
        self._chunk_frames_target = 0
        self._writer: Optional[ChunkFileWriter] = None
        self._chunk: Optional[Chunk] = None

    @property
    def current_chunk(self) -> Optional[Chunk]:
        return self._chunk

    @property
    def elapsed_seconds(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.total_frames / float(self.sample_rate)

    def start(self, sample_rate: int, channels: int) -> Chunk:
        """Open chunk 0."""
        if self._chunk is not None:
            raise RuntimeError("Segmenter already started")
        self.sample_rate = sample_rate
        self.channels = channels
        self._chunk_frames_target = int(round(self.chunk_duration_seconds * sample_rate))
        logger.info(f"Segmenting at {self.chunk_duration_seconds}s per chunk "
                    f"({self._chunk_frames_target} frames @ {sample_rate}Hz)")
        return self._open_chunk()

    def _open_chunk(self) -> Chunk:
        self._chunk_start_frame = self.total_frames
        chunk = self.recording.add_chunk(start_time=self.elapsed_seconds)
        self._chunk = chunk

        try:
            chunk.file_ref, path = self.file_manager.new_chunk_file(self.recording.id, chunk.index)
            self._writer = self.writer_factory(path, self.sample_rate, self.channels)
        except (OSError, wave.Error) as e:
            logger.error(f"Failed to open file for chunk {chunk.index}: {e}")
            chunk.status = ChunkStatus.FAILED
            self._writer = None

        logger.debug(f"Opened chunk {chunk.index} at {chunk.start_time:.2f}s")
        return chunk

    def _close_writer(self) -> None:
        if self._writer is None:
            return
        try:
            self._writer.close()
        except (OSError, wave.Error) as e:
            logger.error(f"Failed to close chunk {self._chunk.index}: {e}")
            self._chunk.status = ChunkStatus.FAILED
        finally:
            self._writer = None

    def _finalize_chunk(self) -> Chunk:
        chunk = self._chunk
        self._close_writer()
        chunk.duration = (self.total_frames - self._chunk_start_frame) / float(self.sample_rate)
        if chunk.status is not ChunkStatus.FAILED:
            chunk.status = ChunkStatus.COMPLETED
        logger.info(f"Finalized chunk {chunk.index}: {chunk.duration:.2f}s ({chunk.status.value})")
        return chunk

    def write(self, buffer: AudioBuffer) -> None:
        """Write a buffer to the open chunk, then roll over if the chunk is full.

        Write failures mark the chunk failed and are not raised.
        """
        if self._chunk is None:
            raise RuntimeError("Segmenter not started")

        if self._writer is not None:
            try:
                self._writer.write(buffer.samples)
            except (OSError, wave.Error) as e:
                logger.error(f"Error writing chunk {self._chunk.index}: {e}")
                self._chunk.status = ChunkStatus.FAILED
                self._close_writer()

        self.total_frames += buffer.frame_count

        if self.total_frames - self._chunk_start_frame >= self._chunk_frames_target:
            self._finalize_chunk()
            self._open_chunk()

    def finalize(self) -> Optional[Chunk]:
        """Finalize the in-flight chunk with whatever it has accrued (possibly 0s)."""
        if self._chunk is None:
            return None
        chunk = self._finalize_chunk()
        self._chunk = None
        return chunk
