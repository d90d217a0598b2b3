"""Event models published over pubsub."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict


@dataclass
class TranscriptEvent:
    """A transcript update from the streaming transcription client."""
    text: str
    confidence: float
    is_final: bool
    start_time: Optional[float] = None  # Seconds from stream start, if provided
    end_time: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SessionEvent:
    """Recording session lifecycle event."""
    event_type: str  # "started", "stopped", "error"
    recording_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
