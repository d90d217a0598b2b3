"""Pytest configuration and fixtures for xenon-notes tests."""

import pytest
import tempfile
import time
import logging
from unittest.mock import Mock, patch
import numpy as np
from pubsub import pub

from xenon_notes.models.audio import AudioBuffer


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "integration: multi-component workflows")
    config.addinivalue_line("markers", "hardware: requires a real microphone")


def pytest_collection_modifyitems(config, items):
    # Hardware tests only run when selected with -m hardware
    if "hardware" in (config.getoption("-m") or ""):
        return
    skip_hardware = pytest.mark.skip(reason="requires a microphone; run with -m hardware")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


@pytest.fixture(autouse=True)
def clean_pubsub():
    """Drop listeners registered by a test so they do not leak into the next one."""
    yield
    pub.unsubAll()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def make_buffer():
    """Factory for float32 AudioBuffers (440 Hz sine, or silence)."""
    counter = {"n": 0}

    def _make(frames=1600, sample_rate=16000, channels=1, pattern="sine"):
        counter["n"] += 1
        if pattern == "sine":
            t = np.arange(frames) / float(sample_rate)
            mono = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
        elif pattern == "silence":
            mono = np.zeros(frames, dtype=np.float32)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")
        samples = np.repeat(mono[:, None], channels, axis=1)
        return AudioBuffer(
            samples=samples,
            sample_rate=sample_rate,
            channels=channels,
            sequence_number=counter["n"],
            timestamp=time.time(),
        )

    return _make


@pytest.fixture
def sample_float_audio():
    """1024 frames of float32 sine as raw bytes, as PyAudio returns them."""
    t = np.arange(1024) / 16000.0
    return (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32).tobytes()


@pytest.fixture
def mock_pyaudio(sample_float_audio):
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        def read(frames, exception_on_overflow=True):
            time.sleep(0.001)
            return sample_float_audio
        mock_stream.read.side_effect = read
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            'index': 0,
            'name': 'Mock Microphone',
            'maxInputChannels': 2,
            'defaultSampleRate': 16000.0,
        }

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }
