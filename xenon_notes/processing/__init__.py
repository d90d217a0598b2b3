"""LLM post-processing of transcripts."""

from .base import TextProcessingRequest, TextProcessingService, build_full_prompt
from .openai_service import OpenAIService
from .anthropic_service import AnthropicService
from .factory import create_text_service

__all__ = [
    "TextProcessingRequest",
    "TextProcessingService",
    "build_full_prompt",
    "OpenAIService",
    "AnthropicService",
    "create_text_service",
]
