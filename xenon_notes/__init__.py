"""xenon-notes: voice notes with live streaming transcription."""

__version__ = "0.1.0"
