"""File management module for chunk audio files and data directories."""

import logging
import shutil
import uuid
from pathlib import Path
from typing import Dict, Any, Tuple

logger = logging.getLogger(__name__)


class FileManager:
    """Manages the data directory layout and per-recording chunk audio files."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.audio_dir = self.data_dir / "audio"
        self.logs_dir = self.data_dir / "logs"
        self.store_path = self.data_dir / "xenon_notes.json"
        self.secrets_path = self.data_dir / "secrets.yaml"

        # Create directory structure
        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.audio_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def new_chunk_file(self, recording_id: str, index: int) -> Tuple[str, Path]:
        """Allocate a unique chunk file location.

        Args:
            recording_id: Owning recording
            index: Chunk sequence index

        Returns:
            (reference relative to the data directory, absolute path)
        """
        recording_dir = self.audio_dir / recording_id
        recording_dir.mkdir(parents=True, exist_ok=True)
        filename = f"chunk_{index}_{uuid.uuid4().hex}.wav"
        path = recording_dir / filename
        return path.relative_to(self.data_dir).as_posix(), path

    def resolve(self, file_ref: str) -> Path:
        """Resolve a stored chunk reference to an absolute path."""
        return self.data_dir / file_ref

    def delete_recording_audio(self, recording_id: str) -> bool:
        """Delete every chunk file of a recording.

        Returns:
            True if a directory was removed
        """
        recording_dir = self.audio_dir / recording_id
        if not recording_dir.exists():
            return False
        shutil.rmtree(recording_dir)
        logger.info(f"Deleted audio for recording {recording_id}")
        return True

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage usage statistics.

        Returns:
            Dictionary with storage statistics
        """
        total_size = 0
        recording_count = 0
        audio_files = 0

        for recording_dir in self.audio_dir.iterdir():
            if recording_dir.is_dir():
                recording_count += 1
                for file_path in recording_dir.rglob("*.wav"):
                    total_size += file_path.stat().st_size
                    audio_files += 1

        return {
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "recording_count": recording_count,
            "audio_files": audio_files,
            "data_directory": str(self.data_dir)
        }
