"""Abstract base class and shared HTTP handling for text-processing services."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from ..errors import (
    InvalidResponseError,
    ProcessingFailedError,
    RateLimitedError,
    UnauthorizedError,
)
from ..models.profile import Profile

logger = logging.getLogger(__name__)


def build_full_prompt(system_prompt: str, transcript: str) -> str:
    """Prompt text recorded on a ProcessedResult."""
    return f"{system_prompt}\n\nTranscript:\n{transcript}"


@dataclass
class TextProcessingRequest:
    """Parameters of one LLM call over a transcript."""
    system_prompt: str
    user_text: str
    model: str
    temperature: float = 0.7
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_tokens: Optional[int] = None

    @classmethod
    def from_profile(cls, profile: Profile, text: str) -> "TextProcessingRequest":
        return cls(
            system_prompt=profile.system_prompt,
            user_text=text,
            model=profile.model_name,
            temperature=profile.temperature,
            top_p=profile.top_p,
            frequency_penalty=profile.frequency_penalty,
            presence_penalty=profile.presence_penalty,
            max_tokens=profile.max_tokens,
        )


class TextProcessingService(ABC):
    """A remote LLM that turns a transcript into processed text."""

    def __init__(self, url: str, session_factory=aiohttp.ClientSession, timeout: float = 120.0):
        """Initialize the service.

        Args:
            url: Endpoint receiving the POST request
            session_factory: aiohttp.ClientSession compatible factory
            timeout: Total request timeout in seconds
        """
        self.url = url
        self._session_factory = session_factory
        self.timeout = timeout

    @abstractmethod
    def build_headers(self, api_key: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def build_body(self, request: TextProcessingRequest) -> Dict[str, Any]:
        pass

    @abstractmethod
    def parse_response(self, data: Any) -> str:
        """Extract the generated text from a decoded 200 response.

        Raises:
            InvalidResponseError: if the body does not have the expected shape
        """
        pass

    async def generate(self, request: TextProcessingRequest, api_key: str) -> str:
        """Send the request and return the generated text.

        Raises:
            UnauthorizedError: HTTP 401
            RateLimitedError: HTTP 429
            ProcessingFailedError: any other status, or a network failure
            InvalidResponseError: unparsable 200 response
        """
        logger.info(f"{type(self).__name__}: sending {len(request.user_text)} chars to {request.model}")
        try:
            async with self._session_factory(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.url,
                                        headers=self.build_headers(api_key),
                                        json=self.build_body(request)) as response:
                    status = response.status
                    body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{type(self).__name__} request failed: {e}")
            raise ProcessingFailedError(f"Network error: {e}") from e

        if status == 401:
            raise UnauthorizedError()
        if status == 429:
            raise RateLimitedError()
        if status != 200:
            logger.error(f"{type(self).__name__} returned status {status}")
            raise ProcessingFailedError(f"Status {status}: {body}")

        try:
            data = json.loads(body)
        except ValueError as e:
            raise InvalidResponseError() from e
        return self.parse_response(data)
