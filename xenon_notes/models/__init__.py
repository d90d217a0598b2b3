"""Data models for the xenon-notes application."""

from .audio import AudioStats, AudioBuffer
from .events import TranscriptEvent, SessionEvent
from .recording import (
    ChunkStatus,
    Chunk,
    TranscriptSegment,
    Transcript,
    Recording,
)
from .profile import LLMProvider, Profile, ProcessedResult
from .transcription import ProviderResponse

__all__ = [
    "AudioStats",
    "AudioBuffer",
    "TranscriptEvent",
    "SessionEvent",
    # Entity graph
    "ChunkStatus",
    "Chunk",
    "TranscriptSegment",
    "Transcript",
    "Recording",
    "LLMProvider",
    "Profile",
    "ProcessedResult",
    # Provider wire models
    "ProviderResponse",
]
