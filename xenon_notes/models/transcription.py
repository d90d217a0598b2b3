"""Wire models for the streaming transcription provider's responses."""

from typing import List, Optional

from pydantic import BaseModel


class ProviderWord(BaseModel):
    word: str
    start: float
    end: float
    confidence: float = 0.0


class ProviderAlternative(BaseModel):
    transcript: str
    confidence: float = 0.0
    words: Optional[List[ProviderWord]] = None


class ProviderChannel(BaseModel):
    alternatives: List[ProviderAlternative]


class ProviderModelInfo(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None
    arch: Optional[str] = None


class ProviderMetadata(BaseModel):
    request_id: Optional[str] = None
    model_info: Optional[ProviderModelInfo] = None


class ProviderResponse(BaseModel):
    """Inbound envelope: ``{type, channel: {alternatives: [...]}, metadata?}``.

    Unknown fields are ignored. Envelopes without a channel (metadata,
    utterance-end, speech-started) carry no transcript.
    """
    type: Optional[str] = None
    channel: Optional[ProviderChannel] = None
    metadata: Optional[ProviderMetadata] = None
    is_final: Optional[bool] = None
    start: Optional[float] = None
    duration: Optional[float] = None

    def top_alternative(self) -> Optional[ProviderAlternative]:
        if self.channel is None or not self.channel.alternatives:
            return None
        return self.channel.alternatives[0]

    @property
    def is_final_result(self) -> bool:
        # Providers that omit is_final only send finalized results.
        return self.type == "Results" and self.is_final is not False

    def time_span(self):
        """Return (start, end) seconds for this result, if known."""
        if self.start is not None and self.duration is not None:
            return self.start, self.start + self.duration
        alternative = self.top_alternative()
        if alternative is not None and alternative.words:
            return alternative.words[0].start, alternative.words[-1].end
        return None, None
