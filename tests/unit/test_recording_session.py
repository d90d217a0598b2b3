"""Unit tests for RecordingSessionController."""

import threading
import time

import pytest
from pubsub import pub

from xenon_notes.config import XenonNotesConfig
from xenon_notes.errors import (
    DeviceLostError,
    MissingCredentialError,
    NotConnectedError,
    PermissionDeniedError,
    StorageError,
    TransportError,
)
from xenon_notes.models.events import TranscriptEvent
from xenon_notes.models.recording import ChunkStatus, Recording, TranscriptSegment
from xenon_notes.services.recording_session import RecordingSessionController, SessionState
from xenon_notes.storage import FileManager, ObjectStore, SecretStore
from xenon_notes.transcription.streaming_client import StreamingTranscriptionClient


class FakeCapture:
    """Capture engine that delivers a scripted number of buffers on start()."""

    def __init__(self, callback, error_callback, make_buffer, buffers=0, frames=1600,
                 sample_rate=16000, channels=1, start_error=None, fail_after=None):
        self.callback = callback
        self.error_callback = error_callback
        self.make_buffer = make_buffer
        self.buffers = buffers
        self.frames = frames
        self.sample_rate = sample_rate
        self.channels = channels
        self.start_error = start_error
        self.fail_after = fail_after
        self.started = False
        self.thread = None
        self.stopped = False
        self.closed = False

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        self.thread = threading.Thread(target=self._emit, daemon=True)
        self.thread.start()

    def _emit(self):
        for n in range(self.buffers):
            if self.fail_after is not None and n == self.fail_after:
                self.error_callback(DeviceLostError("device unplugged"))
                return
            self.callback(self.make_buffer(frames=self.frames, sample_rate=self.sample_rate,
                                           channels=self.channels, pattern="silence"))

    def stop(self):
        # Deliver every scripted buffer before stopping
        if self.thread is not None and self.thread is not threading.current_thread():
            self.thread.join()
        self.stopped = True

    def close(self):
        self.stop()
        self.closed = True


class StubTranscriber:
    """Transcription client double recording what the controller does with it."""

    def __init__(self, connect_error=None, final_text="", segments=()):
        self.connect_error = connect_error
        self.connected = False
        self.final_transcript = ""
        self.final_segments = []
        self._final_text = final_text
        self._segments = list(segments)
        self.sent = 0
        self.calls = []

    def reset(self):
        self.calls.append("reset")
        self.final_transcript = ""
        self.final_segments = []

    def connect(self, timeout=None):
        self.calls.append("connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def connect_async(self):
        self.calls.append("connect_async")

    def send(self, buffer):
        if not self.connected:
            raise NotConnectedError("not connected")
        self.sent += 1
        self.final_transcript = self._final_text
        self.final_segments = list(self._segments)

    def flush(self, timeout=None):
        self.calls.append("flush")

    def set_api_key(self, key):
        self.calls.append("set_api_key")

    def disconnect(self):
        self.calls.append("disconnect")
        self.connected = False

    def shutdown(self):
        self.calls.append("shutdown")


class BlockingTranscriber(StubTranscriber):
    """connect() blocks until disconnect() abandons it."""

    def __init__(self):
        super().__init__()
        self.connecting = threading.Event()
        self.abandoned = threading.Event()

    def connect(self, timeout=None):
        self.calls.append("connect")
        self.connecting.set()
        self.abandoned.wait(5.0)
        raise TransportError("Connection attempt abandoned")

    def disconnect(self):
        super().disconnect()
        self.abandoned.set()


@pytest.fixture
def config(temp_data_dir):
    return XenonNotesConfig.from_dict({
        "audio": {"queue_size": 4096},
        "recording": {"chunk_duration_seconds": 30.0},
        "storage": {"data_directory": temp_data_dir},
    })


@pytest.fixture
def file_manager(temp_data_dir):
    return FileManager(temp_data_dir)


@pytest.fixture
def store(file_manager):
    return ObjectStore(str(file_manager.store_path))


@pytest.fixture
def controller_factory(config, store, file_manager, make_buffer):
    controllers = []

    def _make(buffers=0, transcriber=None, secret_store=None, **capture_kwargs):
        captures = []

        def capture_factory(callback, error_callback):
            capture = FakeCapture(callback, error_callback, make_buffer, buffers=buffers, **capture_kwargs)
            captures.append(capture)
            return capture

        controller = RecordingSessionController(
            config, store, file_manager,
            secret_store=secret_store,
            capture_factory=capture_factory,
            transcription_client=transcriber,
        )
        controller.captures = captures
        controllers.append(controller)
        return controller

    yield _make
    for controller in controllers:
        if controller.state is SessionState.RECORDING:
            controller.stop_recording()


@pytest.mark.unit
class TestRecordingSession:
    """Lifecycle of a recording session."""

    def test_95_second_session_persists_chunks_and_duration(self, controller_factory, store):
        controller = controller_factory(buffers=950)

        recording = controller.start_recording()
        assert controller.is_recording
        finished = controller.stop_recording()

        assert finished is recording
        assert controller.state is SessionState.IDLE
        assert [c.index for c in recording.chunks] == [0, 1, 2, 3]
        assert [c.duration for c in recording.chunks] == pytest.approx([30.0, 30.0, 30.0, 5.0])
        assert recording.duration == pytest.approx(95.0)
        assert sum(c.duration for c in recording.chunks) == pytest.approx(recording.duration)

        reloaded = ObjectStore(str(store.path)).get(Recording, recording.id)
        assert reloaded is not None
        assert len(reloaded.chunks) == 4
        assert reloaded.transcript is None

    def test_never_connected_transcriber_still_persists_recording(self, controller_factory, store):
        transcriber = StubTranscriber(connect_error=TransportError("unreachable"))
        controller = controller_factory(buffers=20, transcriber=transcriber)

        recording = controller.start_recording()
        controller.stop_recording()

        assert transcriber.sent == 0
        assert "disconnect" in transcriber.calls
        reloaded = ObjectStore(str(store.path)).get(Recording, recording.id)
        assert reloaded is not None
        assert reloaded.transcript is None
        assert all(c.status is ChunkStatus.COMPLETED for c in reloaded.chunks)

    def test_final_transcript_is_stored(self, controller_factory, store):
        segments = [TranscriptSegment(text="hello world", start_time=0.0, end_time=1.0, confidence=0.9)]
        transcriber = StubTranscriber(final_text="hello world", segments=segments)
        controller = controller_factory(buffers=10, transcriber=transcriber)

        recording = controller.start_recording()
        controller.stop_recording()

        assert transcriber.calls[:2] == ["reset", "connect"]
        assert "flush" in transcriber.calls
        assert transcriber.sent == 10
        reloaded = ObjectStore(str(store.path)).get(Recording, recording.id)
        assert reloaded.transcript.raw_text == "hello world"
        assert reloaded.transcript.recording_id == recording.id
        assert [s.text for s in reloaded.transcript.segments] == ["hello world"]

    def test_start_while_recording_is_noop(self, controller_factory):
        controller = controller_factory(buffers=1)
        controller.start_recording()

        assert controller.start_recording() is None
        assert len(controller.captures) == 1

    def test_stop_when_idle_returns_none(self, controller_factory):
        controller = controller_factory()
        assert controller.stop_recording() is None

    def test_permission_denied_propagates_and_returns_to_idle(self, controller_factory, store):
        controller = controller_factory(start_error=PermissionDeniedError("denied"))

        with pytest.raises(PermissionDeniedError):
            controller.start_recording()

        assert controller.state is SessionState.IDLE
        assert controller.captures[0].closed
        assert store.query(Recording) == []

    def test_device_loss_stops_session(self, controller_factory, store):
        errors = []

        def on_error(event):
            errors.append(event)

        pub.subscribe(on_error, "session.error")
        controller = controller_factory(buffers=50, fail_after=30)

        recording = controller.start_recording()

        deadline = time.time() + 3.0
        while controller.state is not SessionState.IDLE and time.time() < deadline:
            time.sleep(0.01)

        assert controller.state is SessionState.IDLE
        assert isinstance(controller.last_error, DeviceLostError)
        assert errors and errors[0].recording_id == recording.id
        assert recording.duration == pytest.approx(3.0)
        assert ObjectStore(str(store.path)).get(Recording, recording.id) is not None

    def test_save_failure_is_raised_after_teardown(self, controller_factory, store, monkeypatch):
        transcriber = StubTranscriber()
        controller = controller_factory(buffers=5, transcriber=transcriber)

        def broken_save():
            raise StorageError("disk full")

        monkeypatch.setattr(store, "save", broken_save)
        controller.start_recording()

        with pytest.raises(StorageError):
            controller.stop_recording()

        assert controller.state is SessionState.IDLE
        assert controller.captures[0].closed
        assert "disconnect" in transcriber.calls

    def test_session_events_are_published(self, controller_factory):
        events = []

        def on_started(event):
            events.append(event.event_type)

        def on_stopped(event):
            events.append(event.event_type)

        pub.subscribe(on_started, "session.started")
        pub.subscribe(on_stopped, "session.stopped")
        controller = controller_factory(buffers=2)

        controller.start_recording()
        controller.stop_recording()

        assert events == ["started", "stopped"]

    def test_current_transcript_mirrors_interim_events(self, controller_factory):
        controller = controller_factory()
        pub.sendMessage("transcript.interim", event=TranscriptEvent(text="live", confidence=0.5, is_final=False))

        assert controller.current_transcript == "live"

    def test_full_buffer_queue_drops_and_counts(self, config, store, file_manager, make_buffer):
        config.set('audio.queue_size', 1)
        gate = threading.Event()
        captures = []

        def capture_factory(callback, error_callback):
            capture = FakeCapture(callback, error_callback, make_buffer, buffers=0)
            captures.append(capture)
            return capture

        controller = RecordingSessionController(config, store, file_manager, capture_factory=capture_factory)
        controller.start_recording()

        # Hold the distribution thread inside the segmenter
        segmenter = controller._segmenter
        original_write = segmenter.write

        def slow_write(buffer):
            gate.wait(2.0)
            original_write(buffer)

        segmenter.write = slow_write
        for _ in range(5):
            captures[0].callback(make_buffer())

        assert controller.dropped_buffers >= 3
        gate.set()
        controller.stop_recording()

    def test_stop_while_starting_reaches_idle(self, controller_factory):
        transcriber = BlockingTranscriber()
        controller = controller_factory(buffers=3, transcriber=transcriber)
        started = []

        starter = threading.Thread(target=lambda: started.append(controller.start_recording()), daemon=True)
        starter.start()
        assert transcriber.connecting.wait(2.0)
        assert controller.state is SessionState.STARTING

        finished = controller.stop_recording()
        starter.join(timeout=2.0)

        assert not starter.is_alive()
        assert controller.state is SessionState.IDLE
        assert finished is not None
        assert started == [finished]
        assert transcriber.abandoned.is_set()
        assert controller.captures[0].closed

    def test_unexpected_distribution_error_keeps_session_alive(self, controller_factory, make_buffer):
        controller = controller_factory()
        controller.start_recording()

        segmenter = controller._segmenter
        original_write = segmenter.write
        calls = []

        def flaky_write(buffer):
            calls.append(buffer)
            if len(calls) == 1:
                raise RuntimeError("unexpected")
            original_write(buffer)

        segmenter.write = flaky_write
        for _ in range(3):
            controller.captures[0].callback(make_buffer())
        recording = controller.stop_recording()

        assert controller.state is SessionState.IDLE
        assert len(calls) == 3
        assert recording.duration == pytest.approx(0.2)


@pytest.mark.unit
class TestTranscriptionToggle:

    def test_enable_without_key_raises(self, controller_factory, temp_data_dir):
        controller = controller_factory(secret_store=SecretStore(f"{temp_data_dir}/secrets.yaml"))

        with pytest.raises(MissingCredentialError):
            controller.enable_transcription()
        assert controller.transcription_enabled is False

    def test_enable_uses_secret_store_key(self, controller_factory, temp_data_dir):
        secrets = SecretStore(f"{temp_data_dir}/secrets.yaml")
        secrets.set("deepgram", "dg-key")
        controller = controller_factory(secret_store=secrets)

        controller.enable_transcription()

        assert controller.transcription_enabled is True
        assert controller.transcription_client.api_key == "dg-key"
        controller.close()

    def test_disable_disconnects_client(self, controller_factory):
        transcriber = StubTranscriber()
        controller = controller_factory(transcriber=transcriber)

        controller.disable_transcription()

        assert controller.transcription_enabled is False
        assert transcriber.calls == ["disconnect"]

    def test_disabled_transcription_is_not_fed(self, controller_factory):
        transcriber = StubTranscriber()
        controller = controller_factory(buffers=5, transcriber=transcriber)
        controller.disable_transcription()

        controller.start_recording()
        controller.stop_recording()

        assert "connect" not in transcriber.calls
        assert transcriber.sent == 0

    def test_disable_clears_interim_transcript(self, controller_factory):
        controller = controller_factory(transcriber=StubTranscriber())
        pub.sendMessage("transcript.interim", event=TranscriptEvent(text="stale", confidence=0.5, is_final=False))

        controller.disable_transcription()

        assert controller.current_transcript == ""

    def test_enable_mid_session_feeds_new_client(self, controller_factory, make_buffer, monkeypatch):
        sent = []
        monkeypatch.setattr(StreamingTranscriptionClient, "connect_async", lambda self: None)
        monkeypatch.setattr(StreamingTranscriptionClient, "send", lambda self, buffer: sent.append(buffer))
        controller = controller_factory()
        controller.start_recording()

        controller.enable_transcription(api_key="k")
        for _ in range(5):
            controller.captures[0].callback(make_buffer())
        controller.stop_recording()

        assert len(sent) == 5
        controller.close()
