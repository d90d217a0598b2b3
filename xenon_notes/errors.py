"""Exception hierarchy for xenon-notes."""


class XenonNotesError(Exception):
    """Base class for all application errors."""


class CaptureError(XenonNotesError):
    """Audio capture failure."""


class PermissionDeniedError(CaptureError):
    """Microphone access was refused."""


class CaptureStartError(CaptureError):
    """The audio input could not be activated."""


class DeviceLostError(CaptureError):
    """The input device went away while recording."""


class MissingCredentialError(XenonNotesError):
    """No API key is available for the requested service."""


class TranscriptionError(XenonNotesError):
    """Streaming transcription failure."""


class TransportError(TranscriptionError):
    """Network failure talking to the transcription service."""


class NotConnectedError(TranscriptionError):
    """Audio was sent while the transcription client is not connected."""


class StorageError(XenonNotesError):
    """Persistent storage failure (object store, secrets, chunk files)."""


class TextProcessingError(XenonNotesError):
    """LLM post-processing failure."""


class RateLimitedError(TextProcessingError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message)


class UnauthorizedError(TextProcessingError):
    def __init__(self, message: str = "API key was rejected by the service."):
        super().__init__(message)


class InvalidResponseError(TextProcessingError):
    def __init__(self, message: str = "Invalid response from AI service"):
        super().__init__(message)


class ProcessingFailedError(TextProcessingError):
    """Any other text-processing failure, carrying the service's message."""
