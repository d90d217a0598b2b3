"""Service selection by profile provider."""

import logging

from ..errors import ProcessingFailedError
from ..models.profile import LLMProvider, Profile
from .anthropic_service import AnthropicService
from .base import TextProcessingService
from .openai_service import OpenAIService

logger = logging.getLogger(__name__)


def create_text_service(profile: Profile, **kwargs) -> TextProcessingService:
    """Build the service for a profile.

    Gemini is reached through its OpenAI-compatible endpoint; custom profiles
    must name their own chat completions URL.

    Raises:
        ProcessingFailedError: a custom profile without an endpoint
    """
    provider = profile.provider
    if provider is LLMProvider.ANTHROPIC:
        return AnthropicService(**kwargs)
    if provider is LLMProvider.OPENAI:
        return OpenAIService(**kwargs)
    if provider is LLMProvider.GEMINI:
        return OpenAIService(url=f"{provider.base_url}/chat/completions", **kwargs)

    if not profile.custom_endpoint:
        raise ProcessingFailedError(f"Profile '{profile.name}' has no custom endpoint configured")
    logger.debug(f"Using custom endpoint for profile '{profile.name}'")
    return OpenAIService(url=profile.custom_endpoint, **kwargs)
