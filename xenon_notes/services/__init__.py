"""Services layer for xenon-notes application logic."""

from .recording_session import RecordingSessionController, SessionState
from .processing_service import ProcessingService

__all__ = [
    "RecordingSessionController",
    "SessionState",
    "ProcessingService",
]
