"""Recording entity graph: recordings, chunks and transcripts."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ChunkStatus(Enum):
    """Lifecycle of a recorded chunk."""
    CAPTURING = "capturing"
    QUEUED = "queued"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Chunk:
    """A fixed-duration segment of a recording, stored as its own audio file."""
    index: int
    start_time: float  # Seconds from recording start
    recording_id: str
    duration: float = 0.0
    file_ref: Optional[str] = None  # Path relative to the data directory
    status: ChunkStatus = ChunkStatus.CAPTURING
    transcript_segment_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "index": self.index,
            "start_time": self.start_time,
            "duration": self.duration,
            "file_ref": self.file_ref,
            "status": self.status.value,
            "recording_id": self.recording_id,
            "transcript_segment_id": self.transcript_segment_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            id=data["id"],
            index=data["index"],
            start_time=data["start_time"],
            duration=data.get("duration", 0.0),
            file_ref=data.get("file_ref"),
            status=ChunkStatus(data.get("status", ChunkStatus.COMPLETED.value)),
            recording_id=data["recording_id"],
            transcript_segment_id=data.get("transcript_segment_id"),
        )


@dataclass
class TranscriptSegment:
    text: str
    start_time: float
    end_time: float
    confidence: float = 1.0
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptSegment":
        return cls(
            id=data["id"],
            text=data["text"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            confidence=data.get("confidence", 1.0),
        )


@dataclass
class Transcript:
    """Transcript owned by exactly one recording."""
    recording_id: str
    raw_text: str = ""
    language: str = "en"
    processed_text: Optional[str] = None
    segments: List[TranscriptSegment] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)

    def replace(self, text: str, segments: Optional[List[TranscriptSegment]] = None) -> None:
        """Overwrite the transcript (new session or retranscription)."""
        self.raw_text = text
        self.segments = list(segments or [])
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recording_id": self.recording_id,
            "raw_text": self.raw_text,
            "processed_text": self.processed_text,
            "language": self.language,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "segments": [segment.to_dict() for segment in self.segments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transcript":
        return cls(
            id=data["id"],
            recording_id=data["recording_id"],
            raw_text=data.get("raw_text", ""),
            processed_text=data.get("processed_text"),
            language=data.get("language", "en"),
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=parse_datetime(data.get("updated_at")) or datetime.now(),
            segments=[TranscriptSegment.from_dict(s) for s in data.get("segments", [])],
        )


@dataclass
class Recording:
    """Root of the recording graph. Owns its chunks and transcript."""
    title: str = "New Recording"
    duration: float = 0.0
    chunks: List[Chunk] = field(default_factory=list)
    transcript: Optional[Transcript] = None
    profile_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)

    def add_chunk(self, start_time: float) -> Chunk:
        """Append a new chunk with the next contiguous index."""
        chunk = Chunk(index=len(self.chunks), start_time=start_time, recording_id=self.id)
        self.chunks.append(chunk)
        return chunk

    @property
    def current_chunk(self) -> Optional[Chunk]:
        return self.chunks[-1] if self.chunks else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": format_datetime(self.created_at),
            "duration": self.duration,
            "profile_id": self.profile_id,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "transcript": self.transcript.to_dict() if self.transcript else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recording":
        transcript = data.get("transcript")
        return cls(
            id=data["id"],
            title=data.get("title", "New Recording"),
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
            duration=data.get("duration", 0.0),
            profile_id=data.get("profile_id"),
            chunks=[Chunk.from_dict(c) for c in data.get("chunks", [])],
            transcript=Transcript.from_dict(transcript) if transcript else None,
        )
