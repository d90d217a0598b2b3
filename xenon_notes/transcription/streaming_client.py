"""Streaming transcription client over a persistent WebSocket.

The client owns a private asyncio event loop running on its own thread.
Public methods are called from ordinary threads: ``send`` only converts the
audio and hands the bytes to the loop, so a slow or stalled connection never
blocks the caller. Inbound envelopes are applied strictly in arrival order.
"""

import asyncio
import concurrent.futures
import logging
import threading
from enum import Enum
from typing import Dict, List, Optional, Union

import aiohttp
from pydantic import ValidationError

from ..audio.conversion import TARGET_SAMPLE_RATE, StreamResampler, float_to_pcm16, to_linear16
from ..errors import MissingCredentialError, NotConnectedError, TranscriptionError, TransportError
from ..models.audio import AudioBuffer
from ..models.events import TranscriptEvent
from ..models.recording import TranscriptSegment
from ..models.transcription import ProviderResponse
from .publisher import TranscriptPublisher

logger = logging.getLogger(__name__)

DEFAULT_URL = "wss://api.deepgram.com/v1/listen"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class StreamingTranscriptionClient:
    """Live transcription over a duplex connection to the provider."""

    def __init__(self,
                 api_key: Optional[str] = None,
                 url: str = DEFAULT_URL,
                 model: str = "nova-2",
                 language: str = "en",
                 endpointing_ms: int = 300,
                 connect_timeout: float = 10.0,
                 keepalive_seconds: float = 5.0,
                 send_queue_size: int = 256,
                 finalize_grace_seconds: float = 1.0,
                 publisher: Optional[TranscriptPublisher] = None,
                 session_factory=aiohttp.ClientSession):
        """Initialize the client. Nothing is opened until connect().

        Args:
            api_key: Provider API key
            url: WebSocket endpoint
            model: Provider model name
            language: Language code
            endpointing_ms: Silence (ms) after which the provider finalizes a segment
            connect_timeout: Seconds to wait for the socket to open
            keepalive_seconds: Heartbeat ping interval
            send_queue_size: Outbound frames buffered before frames are dropped
            finalize_grace_seconds: Time flush() waits for trailing results
            publisher: Receives transcript events
            session_factory: aiohttp.ClientSession compatible factory
        """
        self.api_key = api_key
        self.url = url
        self.model = model
        self.language = language
        self.endpointing_ms = endpointing_ms
        self.connect_timeout = connect_timeout
        self.keepalive_seconds = keepalive_seconds
        self.send_queue_size = send_queue_size
        self.finalize_grace_seconds = finalize_grace_seconds
        self.publisher = publisher or TranscriptPublisher()
        self._session_factory = session_factory

        self.state = ConnectionState.DISCONNECTED
        self.current_transcript = ""
        self.final_transcript = ""
        self.final_segments: List[TranscriptSegment] = []
        self.confidence = 0.0
        self.frames_sent = 0
        self.dropped_frames = 0

        self._lock = threading.RLock()
        # Bumped on every connect/disconnect; stale loops compare and bail out
        self._generation = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._connect_future: Optional[concurrent.futures.Future] = None
        self._session = None
        self._ws = None
        self._send_queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Future] = []
        self._resampler: Optional[StreamResampler] = None

    @classmethod
    def from_config(cls, config, api_key: Optional[str] = None,
                    publisher: Optional[TranscriptPublisher] = None) -> "StreamingTranscriptionClient":
        return cls(
            api_key=api_key,
            url=config.get('transcription.url', DEFAULT_URL),
            model=config.get('transcription.model', 'nova-2'),
            language=config.get('transcription.language', 'en'),
            endpointing_ms=config.get('transcription.endpointing_ms', 300),
            connect_timeout=config.get('transcription.connect_timeout_seconds', 10.0),
            keepalive_seconds=config.get('transcription.keepalive_seconds', 5.0),
            send_queue_size=config.get('transcription.send_queue_size', 256),
            finalize_grace_seconds=config.get('transcription.finalize_grace_seconds', 1.0),
            publisher=publisher,
        )

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def session_parameters(self) -> Dict[str, str]:
        """Fixed query parameters describing the outbound stream."""
        return {
            "encoding": "linear16",
            "sample_rate": str(TARGET_SAMPLE_RATE),
            "channels": "1",
            "model": self.model,
            "language": self.language,
            "smart_format": "true",
            "punctuate": "true",
            "interim_results": "true",
            "endpointing": str(self.endpointing_ms),
        }

    # ------------------------------------------------------------------
    # Event loop thread

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=self._run_loop, args=(loop,), daemon=True)
                thread.name = "TranscriptionLoopThread"
                thread.start()
                self._loop, self._loop_thread = loop, thread
            return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()
            logger.debug("Transcription event loop closed")

    def shutdown(self) -> None:
        """Disconnect and stop the client's event loop thread."""
        self.disconnect()
        with self._lock:
            loop, thread = self._loop, self._loop_thread
            self._loop = self._loop_thread = None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Transcription loop thread did not stop cleanly")

    # ------------------------------------------------------------------
    # Connection lifecycle

    def connect_async(self) -> concurrent.futures.Future:
        """Start connecting without waiting.

        Raises:
            MissingCredentialError: if no API key is set

        Returns:
            Future resolving when connected, or raising TransportError
        """
        if not self.api_key:
            raise MissingCredentialError("Transcription API key is missing")

        loop = self._ensure_loop()
        with self._lock:
            if self.state is not ConnectionState.DISCONNECTED and self._connect_future is not None:
                logger.debug(f"Connection already {self.state.value}")
                return self._connect_future

            self._generation += 1
            self.state = ConnectionState.CONNECTING
            self._connect_future = asyncio.run_coroutine_threadsafe(self._open(self._generation), loop)
            return self._connect_future

    def connect(self, timeout: Optional[float] = None) -> None:
        """Open the stream and wait until it is connected.

        Raises:
            MissingCredentialError: if no API key is set
            TransportError: on network failure, timeout or abandonment
        """
        future = self.connect_async()
        wait = timeout if timeout is not None else self.connect_timeout + 1.0
        try:
            future.result(wait)
        except concurrent.futures.TimeoutError:
            self.disconnect()
            raise TransportError("Timed out connecting to transcription service")
        except concurrent.futures.CancelledError:
            raise TransportError("Connection attempt abandoned")

    async def _open(self, generation: int) -> None:
        logger.info(f"Connecting to transcription service: {self.url} (model={self.model}, language={self.language})")
        session = self._session_factory(
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout))
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(
                    self.url,
                    params=self.session_parameters(),
                    headers={"Authorization": f"Token {self.api_key}", "User-Agent": "xenon-notes"},
                    heartbeat=self.keepalive_seconds,
                ),
                self.connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await session.close()
            with self._lock:
                if generation == self._generation:
                    self.state = ConnectionState.DISCONNECTED
            logger.warning(f"Transcription connection failed: {e}")
            raise TransportError(f"Failed to connect to transcription service: {e}") from e
        except asyncio.CancelledError:
            await session.close()
            raise

        with self._lock:
            abandoned = generation != self._generation
            if not abandoned:
                self._session, self._ws = session, ws
                self._send_queue = asyncio.Queue(maxsize=self.send_queue_size)
                self._resampler = None
                self._tasks = [
                    asyncio.ensure_future(self._receive_loop(ws, generation)),
                    asyncio.ensure_future(self._send_loop(ws, self._send_queue, generation)),
                ]
                self.state = ConnectionState.CONNECTED

        if abandoned:
            await self._close(ws, session, [])
            raise TransportError("Connection attempt abandoned")
        logger.info("Transcription service connected")

    def disconnect(self) -> None:
        """Close the stream. Idempotent; keeps the accumulated final transcript."""
        with self._lock:
            self._generation += 1
            previous = self.state
            self.state = ConnectionState.DISCONNECTED
            future, self._connect_future = self._connect_future, None
            ws, session, tasks = self._ws, self._session, self._tasks
            self._ws = self._session = self._send_queue = None
            self._tasks = []
            self.current_transcript = ""
            loop = self._loop

        if future is not None and not future.done():
            future.cancel()
            logger.info("Abandoned pending transcription connection")

        if loop is not None and (ws is not None or session is not None or tasks):
            close_future = asyncio.run_coroutine_threadsafe(self._close(ws, session, tasks), loop)
            try:
                close_future.result(timeout=5.0)
            except concurrent.futures.TimeoutError:
                logger.warning("Timed out closing transcription connection")
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Error closing transcription connection: {e}")

        if previous is not ConnectionState.DISCONNECTED:
            logger.info("Transcription service disconnected")

    async def _close(self, ws, session, tasks) -> None:
        for task in tasks:
            task.cancel()
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None and not session.closed:
            await session.close()

    def _connection_lost(self, generation: int) -> None:
        """Silently degrade to DISCONNECTED after a transport failure."""
        with self._lock:
            if generation != self._generation or self.state is not ConnectionState.CONNECTED:
                return
            self._generation += 1
            self.state = ConnectionState.DISCONNECTED
            ws, session, tasks = self._ws, self._session, self._tasks
            self._ws = self._session = self._send_queue = None
            self._tasks = []
        logger.warning("Transcription connection lost; recording continues without live transcription")
        asyncio.ensure_future(self._close(ws, session, tasks))

    # ------------------------------------------------------------------
    # Outbound audio

    def send(self, buffer: AudioBuffer) -> None:
        """Convert a buffer to 16 kHz mono int16 and queue it for transmission.

        Raises:
            NotConnectedError: outside the CONNECTED state
            TranscriptionError: if the audio cannot be converted
        """
        with self._lock:
            if self.state is not ConnectionState.CONNECTED:
                raise NotConnectedError("Not connected to transcription service")
            loop, queue = self._loop, self._send_queue
            resampler = self._resampler
            if resampler is None or resampler.source_rate != buffer.sample_rate:
                resampler = self._resampler = StreamResampler(buffer.sample_rate)

        try:
            payload = to_linear16(buffer.samples, resampler)
        except ValueError as e:
            raise TranscriptionError(f"Failed to convert audio buffer: {e}") from e

        # An empty binary frame would close the provider's stream
        if payload:
            self._submit(loop, queue, payload)

    def _submit(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, payload: bytes) -> None:
        try:
            loop.call_soon_threadsafe(self._enqueue, queue, payload)
        except RuntimeError as e:
            raise NotConnectedError(f"Transcription loop is not running: {e}") from e

    def _enqueue(self, queue: asyncio.Queue, payload: bytes) -> None:
        try:
            queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped_frames += 1
            if self.dropped_frames % 50 == 1:
                logger.warning(f"Transcription send queue full, dropped {self.dropped_frames} frame(s)")

    async def _send_loop(self, ws, queue: asyncio.Queue, generation: int) -> None:
        while True:
            payload = await queue.get()
            try:
                await ws.send_bytes(payload)
                self.frames_sent += 1
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                logger.warning(f"Transcription send failed: {e}")
                self._connection_lost(generation)
                return
            finally:
                queue.task_done()

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued audio to be sent, then for trailing results."""
        with self._lock:
            if self.state is not ConnectionState.CONNECTED:
                return
            loop, queue = self._loop, self._send_queue
            resampler, self._resampler = self._resampler, None

        if resampler is not None:
            tail = float_to_pcm16(resampler.flush()).tobytes()
            if tail:
                self._submit(loop, queue, tail)

        wait = timeout if timeout is not None else self.finalize_grace_seconds + 5.0
        future = asyncio.run_coroutine_threadsafe(self._drain(queue), loop)
        try:
            future.result(wait)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("Timed out flushing transcription audio")

    async def _drain(self, queue: asyncio.Queue) -> None:
        await queue.join()
        if self.finalize_grace_seconds > 0:
            await asyncio.sleep(self.finalize_grace_seconds)

    # ------------------------------------------------------------------
    # Inbound transcripts

    async def _receive_loop(self, ws, generation: int) -> None:
        try:
            async for msg in ws:
                if generation != self._generation:
                    break
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Transcription socket error: {ws.exception()}")
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning(f"Transcription receive error: {e}")
        finally:
            self._connection_lost(generation)

    def handle_message(self, raw: Union[str, bytes]) -> Optional[TranscriptEvent]:
        """Apply one provider envelope to the transcript state.

        Malformed envelopes are logged and dropped. Retransmitted results are
        not deduplicated.

        Returns:
            The published TranscriptEvent, or None if the envelope carried no transcript
        """
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = bytes(raw).decode('utf-8')
            except UnicodeDecodeError as e:
                logger.warning(f"Dropping undecodable transcription message: {e}")
                return None

        try:
            response = ProviderResponse.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Dropping malformed transcription message: {e.error_count()} error(s)")
            logger.debug(f"Malformed message: {raw[:200]}")
            return None

        alternative = response.top_alternative()
        if alternative is None:
            logger.debug(f"Ignoring '{response.type}' message without transcript")
            return None

        is_final = response.is_final_result and bool(alternative.transcript)
        start_time, end_time = response.time_span()

        with self._lock:
            self.current_transcript = alternative.transcript
            self.confidence = alternative.confidence
            if is_final:
                if self.final_transcript:
                    self.final_transcript += " "
                self.final_transcript += alternative.transcript
                self.final_segments.append(TranscriptSegment(
                    text=alternative.transcript,
                    start_time=start_time or 0.0,
                    end_time=end_time or 0.0,
                    confidence=alternative.confidence,
                ))

        event = TranscriptEvent(
            text=alternative.transcript,
            confidence=alternative.confidence,
            is_final=is_final,
            start_time=start_time,
            end_time=end_time,
        )
        self.publisher.publish(event)
        return event

    def reset(self) -> None:
        """Clear current and final transcript state for a new session."""
        with self._lock:
            self.current_transcript = ""
            self.final_transcript = ""
            self.final_segments = []
            self.confidence = 0.0
            self._resampler = None
