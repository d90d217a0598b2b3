"""OpenAI-compatible chat completions service."""

import logging
from typing import Any, Dict

import aiohttp

from ..errors import InvalidResponseError
from .base import TextProcessingRequest, TextProcessingService

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIService(TextProcessingService):
    """Chat completions over HTTP with bearer auth.

    Any endpoint speaking the OpenAI chat completions dialect works, which
    covers the Gemini compatibility endpoint and most self-hosted servers.
    """

    def __init__(self, url: str = OPENAI_CHAT_URL, session_factory=aiohttp.ClientSession, timeout: float = 120.0):
        super().__init__(url, session_factory=session_factory, timeout=timeout)
        logger.info(f"OpenAIService initialized with endpoint: {url}")

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_body(self, request: TextProcessingRequest) -> Dict[str, Any]:
        body = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_text},
            ],
            "temperature": request.temperature,
            "top_p": request.top_p,
            "frequency_penalty": request.frequency_penalty,
            "presence_penalty": request.presence_penalty,
        }
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        return body

    def parse_response(self, data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidResponseError() from e
        if not isinstance(content, str):
            raise InvalidResponseError()
        return content
