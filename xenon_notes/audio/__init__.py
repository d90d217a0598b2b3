"""Audio capture and chunking module."""

from .capture import AudioCapture
from .chunk_writer import ChunkFileWriter
from .segmenter import ChunkSegmenter

__all__ = [
    'AudioCapture',
    'ChunkFileWriter',
    'ChunkSegmenter',
]
