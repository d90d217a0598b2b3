"""Live transcription module for xenon-notes."""

from .publisher import TranscriptPublisher, INTERIM_TOPIC, FINAL_TOPIC
from .streaming_client import ConnectionState, StreamingTranscriptionClient

__all__ = [
    "TranscriptPublisher",
    "INTERIM_TOPIC",
    "FINAL_TOPIC",
    "ConnectionState",
    "StreamingTranscriptionClient",
]
