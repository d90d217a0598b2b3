"""Unit tests for sample conversion helpers."""

import numpy as np
import pytest
from scipy.signal import resample_poly

from xenon_notes.audio.conversion import StreamResampler, float_to_pcm16, rms_level, to_linear16


@pytest.mark.unit
class TestConversion:

    def test_rms_level(self):
        assert rms_level(np.zeros((100, 1), dtype=np.float32)) == 0.0
        assert rms_level(np.ones((100, 2), dtype=np.float32)) == pytest.approx(1.0)
        assert rms_level(np.array([], dtype=np.float32)) == 0.0

    def test_float_to_pcm16_clips(self):
        pcm = float_to_pcm16(np.array([0.0, 1.0, -1.0, 2.0, -2.0], dtype=np.float32))
        assert pcm.dtype == np.dtype('<i2')
        assert list(pcm) == [0, 32767, -32767, 32767, -32767]

    def test_same_rate_mono_passthrough(self):
        samples = np.full((1600, 1), 0.5, dtype=np.float32)
        data = to_linear16(samples, StreamResampler(16000))

        assert len(data) == 3200
        decoded = np.frombuffer(data, dtype='<i2')
        assert np.all(decoded == int(0.5 * 32767))

    def test_stereo_is_downmixed(self):
        left = np.full(160, 0.5, dtype=np.float32)
        right = np.zeros(160, dtype=np.float32)
        data = to_linear16(np.stack([left, right], axis=1), StreamResampler(16000))

        decoded = np.frombuffer(data, dtype='<i2')
        assert np.all(decoded == int(0.25 * 32767))

    @pytest.mark.parametrize("rate,frames", [(48000, 4800), (44100, 4410), (8000, 800)])
    def test_resampled_length_after_flush(self, rate, frames):
        resampler = StreamResampler(rate)
        data = to_linear16(np.zeros((frames, 1), dtype=np.float32), resampler)
        tail = float_to_pcm16(resampler.flush()).tobytes()

        assert len(data) + len(tail) == 1600 * 2


@pytest.mark.unit
class TestStreamResampler:

    @pytest.mark.parametrize("rate", [44100, 48000, 8000])
    def test_buffered_output_matches_whole_stream(self, rate):
        t = np.arange(rate * 2) / float(rate)
        signal = 0.5 * np.sin(2 * np.pi * 440 * t)
        resampler = StreamResampler(rate)

        pieces = [resampler.process(signal[i:i + 4096]) for i in range(0, len(signal), 4096)]
        pieces.append(resampler.flush())
        streamed = np.concatenate(pieces)

        whole = resample_poly(signal, resampler.up, resampler.down)
        assert len(streamed) == len(whole)
        assert np.allclose(streamed, whole, atol=1e-9)

    def test_no_length_drift_across_buffers(self):
        resampler = StreamResampler(44100)
        total = sum(len(resampler.process(np.zeros(4096))) for _ in range(100))
        total += len(resampler.flush())

        # ceil per buffer would add roughly one sample per buffer
        assert total == -(-4096 * 100 * 160 // 441)

    def test_short_first_buffer_is_held_back(self):
        resampler = StreamResampler(48000)
        assert len(resampler.process(np.zeros(10))) == 0
        assert len(resampler.flush()) == 4

    def test_passthrough_keeps_nothing_back(self):
        resampler = StreamResampler(16000)
        out = resampler.process(np.ones(100))

        assert resampler.passthrough
        assert len(out) == 100
        assert len(resampler.flush()) == 0
