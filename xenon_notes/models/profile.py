"""LLM processing profiles and their results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .recording import new_id, parse_datetime, format_datetime


class LLMProvider(Enum):
    """Text-processing services a profile can target."""
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    GEMINI = "Google Gemini"
    CUSTOM = "Custom"

    @property
    def base_url(self) -> Optional[str]:
        return {
            LLMProvider.OPENAI: "https://api.openai.com/v1",
            LLMProvider.ANTHROPIC: "https://api.anthropic.com/v1",
            LLMProvider.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai",
            LLMProvider.CUSTOM: None,
        }[self]

    @property
    def default_model(self) -> str:
        return {
            LLMProvider.OPENAI: "gpt-4o",
            LLMProvider.ANTHROPIC: "claude-3-5-sonnet-20241022",
            LLMProvider.GEMINI: "gemini-2.0-flash-exp",
            LLMProvider.CUSTOM: "",
        }[self]

    @property
    def available_models(self) -> List[str]:
        return {
            LLMProvider.OPENAI: [
                "gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4",
                "gpt-3.5-turbo", "o1", "o1-mini",
            ],
            LLMProvider.ANTHROPIC: [
                "claude-3-5-sonnet-20241022", "claude-3-5-haiku-20241022",
                "claude-3-opus-20240229", "claude-3-haiku-20240307",
            ],
            LLMProvider.GEMINI: [
                "gemini-2.0-flash-exp", "gemini-1.5-pro", "gemini-1.5-flash",
                "gemini-1.5-flash-8b",
            ],
            LLMProvider.CUSTOM: [],
        }[self]

    @property
    def key_service(self) -> str:
        """Secret-store service name holding this provider's API key."""
        return {
            LLMProvider.OPENAI: "openai",
            LLMProvider.ANTHROPIC: "anthropic",
            LLMProvider.GEMINI: "gemini",
            LLMProvider.CUSTOM: "custom",
        }[self]

    @classmethod
    def parse(cls, value: str) -> "LLMProvider":
        """Accept either the display value or the key-service name."""
        for provider in cls:
            if value.lower() in (provider.value.lower(), provider.key_service):
                return provider
        raise ValueError(f"Unknown LLM provider: {value}")


DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant that processes voice transcriptions."


@dataclass
class Profile:
    """A named LLM configuration used to post-process transcripts."""
    name: str
    provider: LLMProvider = LLMProvider.OPENAI
    model_name: Optional[str] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.7
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_tokens: Optional[int] = None
    is_active: bool = True
    custom_endpoint: Optional[str] = None
    api_key_identifier: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.model_name is None:
            self.model_name = self.provider.default_model

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider.value,
            "model_name": self.model_name,
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "max_tokens": self.max_tokens,
            "is_active": self.is_active,
            "custom_endpoint": self.custom_endpoint,
            "api_key_identifier": self.api_key_identifier,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            id=data["id"],
            name=data["name"],
            provider=LLMProvider(data.get("provider", LLMProvider.OPENAI.value)),
            model_name=data.get("model_name"),
            system_prompt=data.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
            temperature=data.get("temperature", 0.7),
            top_p=data.get("top_p", 1.0),
            frequency_penalty=data.get("frequency_penalty", 0.0),
            presence_penalty=data.get("presence_penalty", 0.0),
            max_tokens=data.get("max_tokens"),
            is_active=data.get("is_active", True),
            custom_endpoint=data.get("custom_endpoint"),
            api_key_identifier=data["api_key_identifier"],
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
        )


@dataclass
class ProcessedResult:
    """Output of one LLM invocation over a transcript.

    ``recording_id`` and ``profile_id`` are weak links: they are set to None
    when the referenced entity is deleted.
    """
    processed_text: str
    prompt: str
    model_used: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    processing_time: float = 0.0
    recording_id: Optional[str] = None
    profile_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": format_datetime(self.created_at),
            "processed_text": self.processed_text,
            "prompt": self.prompt,
            "model_used": self.model_used,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "processing_time": self.processing_time,
            "recording_id": self.recording_id,
            "profile_id": self.profile_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessedResult":
        return cls(
            id=data["id"],
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
            processed_text=data["processed_text"],
            prompt=data["prompt"],
            model_used=data["model_used"],
            temperature=data.get("temperature", 0.7),
            max_tokens=data.get("max_tokens"),
            processing_time=data.get("processing_time", 0.0),
            recording_id=data.get("recording_id"),
            profile_id=data.get("profile_id"),
        )
