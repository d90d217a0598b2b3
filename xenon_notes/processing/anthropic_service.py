"""Anthropic messages API service."""

import logging
from typing import Any, Dict

import aiohttp

from ..errors import InvalidResponseError
from .base import TextProcessingRequest, TextProcessingService

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
# The messages API rejects requests without max_tokens
DEFAULT_MAX_TOKENS = 4096


class AnthropicService(TextProcessingService):
    """Messages API with the system prompt in its own field."""

    def __init__(self, url: str = ANTHROPIC_MESSAGES_URL, session_factory=aiohttp.ClientSession,
                 timeout: float = 120.0):
        super().__init__(url, session_factory=session_factory, timeout=timeout)
        logger.info(f"AnthropicService initialized with endpoint: {url}")

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def build_body(self, request: TextProcessingRequest) -> Dict[str, Any]:
        return {
            "model": request.model,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_text}],
            "temperature": request.temperature,
            "top_p": request.top_p,
            "max_tokens": request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS,
        }

    def parse_response(self, data: Any) -> str:
        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidResponseError() from e
        if not isinstance(text, str):
            raise InvalidResponseError()
        return text
