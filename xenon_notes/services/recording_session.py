"""Recording session controller: the start/stop lifecycle of one recording."""

import logging
import queue
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pubsub import pub

from ..audio.capture import AudioCapture
from ..audio.conversion import rms_level
from ..audio.segmenter import ChunkSegmenter
from ..config import XenonNotesConfig
from ..errors import (
    CaptureError,
    MissingCredentialError,
    NotConnectedError,
    StorageError,
    TranscriptionError,
    TransportError,
    XenonNotesError,
)
from ..models.audio import AudioBuffer
from ..models.events import SessionEvent, TranscriptEvent
from ..models.recording import Recording, Transcript
from ..storage.file_manager import FileManager
from ..storage.object_store import ObjectStore
from ..storage.secret_store import SecretStore
from ..transcription.publisher import INTERIM_TOPIC, TranscriptPublisher
from ..transcription.streaming_client import StreamingTranscriptionClient

logger = logging.getLogger(__name__)

SESSION_STARTED_TOPIC = "session.started"
SESSION_STOPPED_TOPIC = "session.stopped"
SESSION_ERROR_TOPIC = "session.error"

TRANSCRIPTION_KEY_SERVICE = "deepgram"

CaptureFactory = Callable[..., AudioCapture]


class SessionState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"


class RecordingSessionController:
    """Orchestrates capture, chunk segmentation and live transcription.

    The capture thread only enqueues buffers. A distribution thread feeds each
    buffer to the transcription client and then to the chunk segmenter, so a
    stalled network never holds up file writes and a failed file write never
    holds up transcription. The Recording graph is only mutated by that
    thread while recording, and by the controller after joining it.
    """

    def __init__(self,
                 config: XenonNotesConfig,
                 store: ObjectStore,
                 file_manager: FileManager,
                 secret_store: Optional[SecretStore] = None,
                 capture_factory: Optional[CaptureFactory] = None,
                 transcription_client: Optional[StreamingTranscriptionClient] = None,
                 publisher: Optional[TranscriptPublisher] = None):
        """Initialize the controller.

        Args:
            config: Application configuration
            store: Object store receiving recordings
            file_manager: Allocates chunk files
            secret_store: Source of the transcription API key
            capture_factory: Builds the capture engine from (callback, error_callback)
            transcription_client: Pre-built client; otherwise built on enable_transcription()
            publisher: Transcript event publisher shared with the client
        """
        self.config = config
        self.store = store
        self.file_manager = file_manager
        self.secret_store = secret_store
        self._capture_factory = capture_factory or self._default_capture_factory
        self.publisher = publisher or TranscriptPublisher()
        self.transcription_client = transcription_client
        self.transcription_enabled = transcription_client is not None

        self.state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._started = threading.Event()
        self._started.set()

        # Observable session state
        self.current_recording: Optional[Recording] = None
        self.current_transcript = ""
        self.recording_time = 0.0
        self.audio_level = 0.0
        self.dropped_buffers = 0
        self.last_error: Optional[XenonNotesError] = None

        self._capture = None
        self._segmenter: Optional[ChunkSegmenter] = None
        self._buffer_queue: Optional[queue.Queue] = None
        self._distribution_thread: Optional[threading.Thread] = None

        pub.subscribe(self._on_transcript, INTERIM_TOPIC)
        logger.info("RecordingSessionController initialized")

    @property
    def is_recording(self) -> bool:
        return self.state is SessionState.RECORDING

    def _default_capture_factory(self, callback, error_callback) -> AudioCapture:
        return AudioCapture(
            callback,
            error_callback=error_callback,
            sample_rate=self.config.get('audio.sample_rate'),
            channels=self.config.get('audio.channels', 1),
            frames_per_buffer=self.config.get('audio.frames_per_buffer', 4096),
            input_device_index=self.config.get('audio.input_device_index'),
        )

    # ------------------------------------------------------------------
    # Transcription toggle

    def enable_transcription(self, api_key: Optional[str] = None) -> None:
        """Turn on live transcription for this and later sessions.

        Args:
            api_key: Provider key; defaults to the secret store's deepgram entry

        Raises:
            MissingCredentialError: if no key is available
        """
        if not api_key and self.secret_store is not None:
            api_key = self.secret_store.get(TRANSCRIPTION_KEY_SERVICE)
        if not api_key:
            raise MissingCredentialError("No transcription API key configured")

        if self.transcription_client is None:
            self.transcription_client = StreamingTranscriptionClient.from_config(
                self.config, api_key=api_key, publisher=self.publisher)
        else:
            self.transcription_client.set_api_key(api_key)
        self.transcription_enabled = True
        logger.info("Live transcription enabled")

        if self.state is SessionState.RECORDING:
            self.transcription_client.connect_async()

    def disable_transcription(self) -> None:
        self.transcription_enabled = False
        if self.transcription_client is not None:
            self.transcription_client.disconnect()
        self.current_transcript = ""
        logger.info("Live transcription disabled")

    def _on_transcript(self, event: TranscriptEvent) -> None:
        self.current_transcript = event.text

    # ------------------------------------------------------------------
    # Lifecycle

    def start_recording(self) -> Optional[Recording]:
        """Start a new recording session.

        Returns:
            The new Recording, or None if a session is already active

        Raises:
            PermissionDeniedError: microphone access refused
            CaptureStartError: the audio input could not be activated
        """
        with self._state_lock:
            if self.state is not SessionState.IDLE:
                logger.warning(f"Cannot start recording while {self.state.value}")
                return None
            self.state = SessionState.STARTING
            self._started.clear()

        try:
            recording = self._start_session()
        except BaseException:
            with self._state_lock:
                self.state = SessionState.IDLE
            self._started.set()
            raise

        with self._state_lock:
            self.state = SessionState.RECORDING
        self._started.set()

        logger.info(f"Recording started: {recording.id}")
        pub.sendMessage(SESSION_STARTED_TOPIC, event=SessionEvent("started", recording.id))
        return recording

    def _start_session(self) -> Recording:
        self._buffer_queue = queue.Queue(maxsize=self.config.get('audio.queue_size', 1024))
        self.dropped_buffers = 0
        self.recording_time = 0.0
        self.audio_level = 0.0
        self.current_transcript = ""
        self.last_error = None

        recording = Recording(title=f"Recording {datetime.now():%Y-%m-%d %H:%M}")
        self.current_recording = recording

        capture = self._capture_factory(self._on_buffer, self._on_capture_error)
        try:
            capture.start()
        except CaptureError as e:
            logger.error(f"Failed to start audio capture: {e}")
            capture.close()
            self.current_recording = None
            raise
        self._capture = capture
        try:
            self._open_session(recording, capture)
        except BaseException:
            capture.close()
            self._capture = None
            raise
        return recording

    def _open_session(self, recording: Recording, capture) -> None:
        self.store.insert(recording)

        if self.transcription_client is not None:
            self.transcription_client.reset()

        self._segmenter = ChunkSegmenter(
            recording,
            self.file_manager,
            chunk_duration_seconds=self.config.get('recording.chunk_duration_seconds', 30.0),
        )
        self._segmenter.start(capture.sample_rate, capture.channels)

        if self.transcription_enabled and self.transcription_client is not None:
            try:
                self.transcription_client.connect()
            except (TransportError, MissingCredentialError) as e:
                logger.warning(f"Live transcription unavailable, recording without it: {e}")

        self._distribution_thread = threading.Thread(target=self._distribute, daemon=True)
        self._distribution_thread.name = "BufferDistributionThread"
        self._distribution_thread.start()

    def stop_recording(self) -> Optional[Recording]:
        """Stop the active session and persist it.

        Returns:
            The finished Recording, or None if there was no active session

        Raises:
            StorageError: if persisting failed; teardown has completed regardless
        """
        with self._state_lock:
            starting = self.state is SessionState.STARTING
            if not starting and self.state is not SessionState.RECORDING:
                logger.debug(f"No recording to stop ({self.state.value})")
                return None

        if starting:
            logger.info("Stop requested during start; abandoning pending connection")
            if self.transcription_client is not None:
                self.transcription_client.disconnect()
            self._started.wait()

        with self._state_lock:
            if self.state is not SessionState.RECORDING:
                return None
            self.state = SessionState.STOPPING

        return self._teardown()

    def _teardown(self) -> Recording:
        recording = self.current_recording
        client = self.transcription_client

        # No buffer arrives after this; drain what is queued
        self._capture.stop()
        self._buffer_queue.put(None)
        self._distribution_thread.join()
        self._distribution_thread = None

        self._segmenter.finalize()
        recording.duration = self.recording_time
        logger.info(f"Recording {recording.id}: {len(recording.chunks)} chunk(s), {recording.duration:.2f}s"
                    f", {self.dropped_buffers} buffer(s) dropped")

        save_error: Optional[StorageError] = None
        try:
            if client is not None:
                client.flush()
                if client.final_transcript:
                    self._store_transcript(recording, client.final_transcript, client)
                else:
                    logger.info("No final transcript for this recording")
            self.store.save()
        except StorageError as e:
            logger.error(f"Failed to persist recording {recording.id}: {e}")
            save_error = e
        finally:
            if client is not None:
                client.disconnect()
            self._capture.close()
            self._capture = None
            self._segmenter = None
            with self._state_lock:
                self.state = SessionState.IDLE

        pub.sendMessage(SESSION_STOPPED_TOPIC, event=SessionEvent(
            "stopped", recording.id, metadata={"duration": recording.duration, "chunks": len(recording.chunks)}))
        if save_error is not None:
            raise save_error
        return recording

    def _store_transcript(self, recording: Recording, text: str,
                          client: StreamingTranscriptionClient) -> None:
        if recording.transcript is None:
            recording.transcript = Transcript(
                recording_id=recording.id,
                raw_text=text,
                language=self.config.get('transcription.language', 'en'),
                segments=list(client.final_segments),
            )
        else:
            recording.transcript.replace(text, client.final_segments)
        logger.info(f"Stored transcript: {len(text)} chars, {len(client.final_segments)} segment(s)")

    # ------------------------------------------------------------------
    # Buffer path

    def _on_buffer(self, buffer: AudioBuffer) -> None:
        """Capture-thread callback; never blocks."""
        try:
            self._buffer_queue.put_nowait(buffer)
        except queue.Full:
            self.dropped_buffers += 1
            if self.dropped_buffers % 10 == 1:
                logger.warning(f"Buffer queue full, dropped {self.dropped_buffers} buffer(s)")

    def _distribute(self) -> None:
        while True:
            buffer = self._buffer_queue.get()
            if buffer is None:
                break
            try:
                self._distribute_buffer(buffer)
            except Exception as e:
                logger.error(f"Error distributing buffer {buffer.sequence_number}: {e}")

        logger.debug("Buffer distribution finished")

    def _distribute_buffer(self, buffer: AudioBuffer) -> None:
        self.audio_level = rms_level(buffer.samples)

        # Transcription may be enabled mid-session
        client = self.transcription_client
        if client is not None and self.transcription_enabled:
            try:
                client.send(buffer)
            except NotConnectedError:
                pass
            except TranscriptionError as e:
                logger.warning(f"Skipping buffer {buffer.sequence_number} for transcription: {e}")

        self._segmenter.write(buffer)
        self.recording_time = self._segmenter.elapsed_seconds

    def _on_capture_error(self, error: CaptureError) -> None:
        """Device loss: record it and tear the session down off the capture thread."""
        logger.error(f"Capture failed during recording: {error}")
        self.last_error = error
        recording_id = self.current_recording.id if self.current_recording else None
        pub.sendMessage(SESSION_ERROR_TOPIC, event=SessionEvent("error", recording_id, metadata={"error": str(error)}))
        threading.Thread(target=self._stop_after_error, name="SessionErrorStopThread", daemon=True).start()

    def _stop_after_error(self) -> None:
        try:
            self.stop_recording()
        except XenonNotesError as e:
            logger.error(f"Error stopping recording after capture failure: {e}")
            self.last_error = e

    def close(self) -> None:
        """Stop any active session and release the transcription client."""
        if self.state is not SessionState.IDLE:
            self.stop_recording()
        pub.unsubscribe(self._on_transcript, INTERIM_TOPIC)
        if self.transcription_client is not None:
            self.transcription_client.shutdown()
