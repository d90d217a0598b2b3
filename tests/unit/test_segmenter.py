"""Unit tests for ChunkSegmenter."""

import wave

import pytest

from xenon_notes.audio.segmenter import ChunkSegmenter
from xenon_notes.models.recording import ChunkStatus, Recording
from xenon_notes.storage.file_manager import FileManager


class RecordingWriter:
    """In-memory stand-in for ChunkFileWriter."""

    instances = []

    def __init__(self, path, sample_rate, channels):
        self.path = path
        self.frames_written = 0
        self.closed = False
        RecordingWriter.instances.append(self)

    def write(self, samples):
        self.frames_written += samples.shape[0]

    def close(self):
        self.closed = True


class FailingWriterFactory:
    """Writer factory whose writer for one chunk index fails on write."""

    def __init__(self, failing_index):
        self.failing_index = failing_index
        self.opened = 0

    def __call__(self, path, sample_rate, channels):
        index = self.opened
        self.opened += 1
        writer = RecordingWriter(path, sample_rate, channels)
        if index == self.failing_index:
            def fail(samples):
                raise OSError("disk full")
            writer.write = fail
        return writer


@pytest.fixture(autouse=True)
def reset_writers():
    RecordingWriter.instances = []
    yield


@pytest.fixture
def file_manager(temp_data_dir):
    return FileManager(temp_data_dir)


def feed(segmenter, make_buffer, seconds, frames=1600, sample_rate=16000):
    buffers = int(round(seconds * sample_rate / frames))
    for _ in range(buffers):
        segmenter.write(make_buffer(frames=frames, sample_rate=sample_rate, pattern="silence"))


@pytest.mark.unit
class TestChunkSegmenter:
    """Test cases for chunk rollover and finalization."""

    def test_95_second_recording_makes_four_chunks(self, file_manager, make_buffer):
        recording = Recording()
        segmenter = ChunkSegmenter(recording, file_manager, 30.0, writer_factory=RecordingWriter)
        segmenter.start(16000, 1)

        feed(segmenter, make_buffer, 95)
        segmenter.finalize()

        assert [c.index for c in recording.chunks] == [0, 1, 2, 3]
        assert [c.duration for c in recording.chunks] == pytest.approx([30.0, 30.0, 30.0, 5.0])
        assert [c.start_time for c in recording.chunks] == pytest.approx([0.0, 30.0, 60.0, 90.0])
        assert all(c.status is ChunkStatus.COMPLETED for c in recording.chunks)
        assert segmenter.elapsed_seconds == pytest.approx(95.0)

    def test_every_frame_written_exactly_once(self, file_manager, make_buffer):
        recording = Recording()
        segmenter = ChunkSegmenter(recording, file_manager, 1.0, writer_factory=RecordingWriter)
        segmenter.start(16000, 1)

        feed(segmenter, make_buffer, 3.5)
        segmenter.finalize()

        assert [w.frames_written for w in RecordingWriter.instances] == [16000, 16000, 16000, 8000]
        assert all(w.closed for w in RecordingWriter.instances)

    def test_chunk_durations_sum_to_elapsed(self, file_manager, make_buffer):
        recording = Recording()
        # 4096-frame buffers do not divide the chunk length evenly
        segmenter = ChunkSegmenter(recording, file_manager, 2.0, writer_factory=RecordingWriter)
        segmenter.start(44100, 2)

        for _ in range(100):
            segmenter.write(make_buffer(frames=4096, sample_rate=44100, channels=2))
        segmenter.finalize()

        total = sum(c.duration for c in recording.chunks)
        assert total == pytest.approx(segmenter.elapsed_seconds)
        assert [c.index for c in recording.chunks] == list(range(len(recording.chunks)))

    def test_rollover_on_exact_boundary_leaves_zero_length_trailing_chunk(self, file_manager, make_buffer):
        recording = Recording()
        segmenter = ChunkSegmenter(recording, file_manager, 1.0, writer_factory=RecordingWriter)
        segmenter.start(16000, 1)

        feed(segmenter, make_buffer, 2.0)
        last = segmenter.finalize()

        assert len(recording.chunks) == 3
        assert last.index == 2
        assert last.duration == 0.0
        assert last.status is ChunkStatus.COMPLETED

    def test_failed_write_marks_chunk_and_later_chunks_continue(self, file_manager, make_buffer):
        recording = Recording()
        factory = FailingWriterFactory(failing_index=1)
        segmenter = ChunkSegmenter(recording, file_manager, 1.0, writer_factory=factory)
        segmenter.start(16000, 1)

        feed(segmenter, make_buffer, 3.5)
        segmenter.finalize()

        statuses = [c.status for c in recording.chunks]
        assert statuses == [ChunkStatus.COMPLETED, ChunkStatus.FAILED,
                            ChunkStatus.COMPLETED, ChunkStatus.COMPLETED]
        # Timing is unaffected by the failure
        assert [c.duration for c in recording.chunks] == pytest.approx([1.0, 1.0, 1.0, 0.5])
        assert RecordingWriter.instances[2].frames_written == 16000

    def test_failed_open_marks_chunk_failed(self, file_manager, make_buffer):
        recording = Recording()
        opened = []

        def factory(path, sample_rate, channels):
            opened.append(path)
            if len(opened) == 1:
                raise OSError("permission denied")
            return RecordingWriter(path, sample_rate, channels)

        segmenter = ChunkSegmenter(recording, file_manager, 1.0, writer_factory=factory)
        segmenter.start(16000, 1)
        feed(segmenter, make_buffer, 1.5)
        segmenter.finalize()

        assert recording.chunks[0].status is ChunkStatus.FAILED
        assert recording.chunks[1].status is ChunkStatus.COMPLETED
        assert recording.chunks[0].duration == pytest.approx(1.0)

    def test_writes_real_wav_files(self, file_manager, make_buffer):
        recording = Recording()
        segmenter = ChunkSegmenter(recording, file_manager, 0.5)
        segmenter.start(16000, 1)

        feed(segmenter, make_buffer, 0.8)
        segmenter.finalize()

        assert len(recording.chunks) == 2
        first = file_manager.resolve(recording.chunks[0].file_ref)
        with wave.open(str(first), 'rb') as wf:
            assert wf.getframerate() == 16000
            assert wf.getsampwidth() == 2
            assert wf.getnframes() == 8000
        assert recording.chunks[0].file_ref != recording.chunks[1].file_ref

    def test_write_before_start_raises(self, file_manager, make_buffer):
        segmenter = ChunkSegmenter(Recording(), file_manager, writer_factory=RecordingWriter)
        with pytest.raises(RuntimeError):
            segmenter.write(make_buffer())

    def test_finalize_without_start_is_noop(self, file_manager):
        segmenter = ChunkSegmenter(Recording(), file_manager, writer_factory=RecordingWriter)
        assert segmenter.finalize() is None

    def test_invalid_chunk_duration(self, file_manager):
        with pytest.raises(ValueError):
            ChunkSegmenter(Recording(), file_manager, 0)
