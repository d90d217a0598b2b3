"""Runs a profile's LLM over a recording's transcript and stores the result."""

import logging
import time
from typing import Callable

from ..errors import MissingCredentialError, ProcessingFailedError
from ..models.profile import Profile, ProcessedResult
from ..models.recording import Recording
from ..processing.base import TextProcessingRequest, TextProcessingService, build_full_prompt
from ..processing.factory import create_text_service
from ..storage.object_store import ObjectStore
from ..storage.secret_store import SecretStore

logger = logging.getLogger(__name__)


class ProcessingService:
    """Post-processes transcripts with a profile's LLM configuration."""

    def __init__(self,
                 store: ObjectStore,
                 secret_store: SecretStore,
                 service_factory: Callable[[Profile], TextProcessingService] = create_text_service):
        self.store = store
        self.secret_store = secret_store
        self.service_factory = service_factory

    def resolve_api_key(self, profile: Profile) -> str:
        """Profile-specific key first, then the provider-wide key.

        Raises:
            MissingCredentialError: if neither exists
        """
        service = profile.provider.key_service
        api_key = self.secret_store.resolve_api_key(service, profile.api_key_identifier)
        if not api_key:
            raise MissingCredentialError(
                f"API key not found for {profile.provider.value}. Set it with 'xenon-notes keys set {service}'.")
        return api_key

    async def process_recording(self, recording: Recording, profile: Profile) -> ProcessedResult:
        """Process a recording's transcript and persist the result.

        Args:
            recording: Recording with a transcript
            profile: LLM configuration to apply

        Returns:
            The stored ProcessedResult

        Raises:
            MissingCredentialError: no API key for the profile's provider
            TextProcessingError: the LLM call failed
            StorageError: the result could not be saved
        """
        transcript = recording.transcript
        if transcript is None or not transcript.raw_text.strip():
            raise ProcessingFailedError(f"Recording {recording.id} has no transcript to process")

        api_key = self.resolve_api_key(profile)
        service = self.service_factory(profile)
        request = TextProcessingRequest.from_profile(profile, transcript.raw_text)

        logger.info(f"Processing recording {recording.id} with profile '{profile.name}' ({profile.model_name})")
        started = time.monotonic()
        processed_text = await service.generate(request, api_key)
        processing_time = time.monotonic() - started
        logger.info(f"Processing finished in {processing_time:.2f}s")

        result = ProcessedResult(
            processed_text=processed_text,
            prompt=build_full_prompt(profile.system_prompt, transcript.raw_text),
            model_used=profile.model_name,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            processing_time=processing_time,
            recording_id=recording.id,
            profile_id=profile.id,
        )
        self.store.insert(result)
        recording.profile_id = profile.id
        self.store.save()
        return result
