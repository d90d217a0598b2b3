"""Audio capture module delivering float PCM buffers from a background thread."""

import pyaudio
import time
import logging
import threading
from threading import Thread, Event
from typing import Optional, Callable
from datetime import datetime

import numpy as np

from ..errors import CaptureError, CaptureStartError, DeviceLostError, PermissionDeniedError
from ..models.audio import AudioBuffer, AudioStats
from .conversion import rms_level


logger = logging.getLogger(__name__)


def default_permission_check(pyaudio_instance: pyaudio.PyAudio) -> bool:
    """Microphone gate: an input device must be present and accessible."""
    try:
        info = pyaudio_instance.get_default_input_device_info()
    except (IOError, OSError) as e:
        logger.warning(f"No accessible input device: {e}")
        return False
    return int(info.get('maxInputChannels', 0)) > 0


class AudioCapture:
    """Continuous audio capture invoking a callback once per buffer."""

    def __init__(
        self,
        callback: Callable[[AudioBuffer], None],
        error_callback: Optional[Callable[[CaptureError], None]] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        frames_per_buffer: int = 4096,
        input_device_index: Optional[int] = None,
        permission_check: Optional[Callable[[pyaudio.PyAudio], bool]] = None,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callback: Receives each AudioBuffer on the capture thread
            error_callback: Receives a DeviceLostError if input fails mid-session
            sample_rate: Input rate in Hz; None uses the device's native rate
            channels: Number of input channels
            frames_per_buffer: Frames per delivered buffer
            input_device_index: PyAudio device index; None for the default input
            permission_check: Microphone gate, defaults to probing the input device
        """
        self.callback = callback
        self.error_callback = error_callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.input_device_index = input_device_index
        self.permission_check = permission_check or default_permission_check

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False
        # Held while a callback runs; stop() takes it to fence off late callbacks
        self._callback_lock = threading.RLock()

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_buffers = 0
        self.audio_level = 0.0

        # PyAudio instance
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    def start(self) -> None:
        """Check the microphone gate, open the input and start the capture thread.

        Raises:
            PermissionDeniedError: microphone access refused
            CaptureStartError: the input stream could not be opened
        """
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        if self.pyaudio_instance is None:
            self.pyaudio_instance = pyaudio.PyAudio()

        if not self.permission_check(self.pyaudio_instance):
            raise PermissionDeniedError("Microphone access denied")

        try:
            if self.sample_rate is None:
                device = (self.pyaudio_instance.get_device_info_by_index(self.input_device_index)
                          if self.input_device_index is not None
                          else self.pyaudio_instance.get_default_input_device_info())
                self.sample_rate = int(device['defaultSampleRate'])
            self.stream = self.__open_audio_stream()
        except (IOError, OSError) as e:
            raise CaptureStartError(f"Failed to open audio input: {e}") from e

        logger.info("Starting audio capture")
        self.stop_event.clear()
        self.start_time = datetime.now()
        self.total_buffers = 0
        self.audio_level = 0.0

        self.recording_thread = Thread(target=self._record_continuously, args=(self.stream,), daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.is_recording = True
        self.recording_thread.start()

    def stop(self) -> None:
        """Stop capture. No callback fires after this returns."""
        if not self.is_recording:
            logger.debug("No capture in progress")
            return

        logger.info("Stopping audio capture")
        self.stop_event.set()
        with self._callback_lock:
            self.is_recording = False

        # Wait for recording thread to finish, unless stop() came from a callback
        if (self.recording_thread and self.recording_thread.is_alive()
                and self.recording_thread is not threading.current_thread()):
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Capture thread did not stop cleanly")

        logger.info(f"Capture stopped. Total buffers: {self.total_buffers}")

    def close(self) -> None:
        """Release the platform audio session."""
        self.stop()
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
            logger.debug("PyAudio terminated")

    def __open_audio_stream(self):
        stream = self.pyaudio_instance.open(
            format=pyaudio.paFloat32,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.input_device_index,
            frames_per_buffer=self.frames_per_buffer,
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, {self.channels} channel(s), "
                    f"{self.frames_per_buffer} frames/buffer")
        return stream

    def __read_buffer(self, stream) -> AudioBuffer:
        raw = stream.read(self.frames_per_buffer, exception_on_overflow=False)
        samples = np.frombuffer(raw, dtype=np.float32).reshape(-1, self.channels)

        self.total_buffers += 1
        self.audio_level = rms_level(samples)
        return AudioBuffer(
            samples=samples,
            sample_rate=self.sample_rate,
            channels=self.channels,
            sequence_number=self.total_buffers,
            timestamp=time.time(),
        )

    def _record_continuously(self, stream) -> None:
        """Internal method: continuous capture loop in background thread."""
        try:
            while not self.stop_event.is_set():
                buffer = self.__read_buffer(stream)
                with self._callback_lock:
                    if self.stop_event.is_set():
                        break
                    self.callback(buffer)
        except (IOError, OSError) as e:
            if not self.stop_event.is_set():
                logger.error(f"Audio input lost: {e}")
                self.is_recording = False
                if self.error_callback:
                    self.error_callback(DeviceLostError(str(e)))
        finally:
            # Clean up stream resources
            try:
                stream.stop_stream()
                stream.close()
            except (IOError, OSError) as e:
                logger.debug(f"Error closing audio stream: {e}")

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        duration = 0.0
        if self.sample_rate:
            duration = self.total_buffers * self.frames_per_buffer / float(self.sample_rate)

        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.sample_rate or 0,
            channels=self.channels,
            frames_per_buffer=self.frames_per_buffer,
            total_buffers=self.total_buffers,
            audio_level=self.audio_level,
        )
