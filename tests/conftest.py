"""
Pytest configuration and fixtures for stretchcore tests.
"""
import pytest
import numpy as np

from stretchcore.core.buffer import SampleBuffer

SAMPLE_RATE = 44100


def sine(freq: float, seconds: float = 1.0, sr: int = SAMPLE_RATE, amplitude: float = 1.0) -> np.ndarray:
    t = np.arange(int(sr * seconds)) / sr
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def dominant_frequency(signal: np.ndarray, sr: int) -> float:
    """Frequency of the strongest FFT bin (Hann-windowed)."""
    windowed = signal * np.hanning(len(signal))
    spectrum = np.abs(np.fft.rfft(windowed))
    freqs = np.fft.rfftfreq(len(signal), 1 / sr)
    return float(freqs[np.argmax(spectrum)])


@pytest.fixture
def sample_mono_audio() -> np.ndarray:
    """Generate 1 second of mono 440 Hz sine wave audio."""
    return sine(440.0)


@pytest.fixture
def sample_stereo_audio() -> np.ndarray:
    """Generate 1 second of stereo sine wave audio, shape (frames, 2)."""
    left = sine(440.0)
    right = sine(880.0)
    return np.column_stack((left, right))


@pytest.fixture
def mono_buffer(sample_mono_audio) -> SampleBuffer:
    """1 s, 44.1 kHz mono 440 Hz buffer."""
    return SampleBuffer(sample_mono_audio, SAMPLE_RATE, channels=1)


@pytest.fixture
def stereo_buffer(sample_stereo_audio) -> SampleBuffer:
    """1 s, 44.1 kHz stereo buffer with tempo metadata."""
    return SampleBuffer.from_frames(sample_stereo_audio, SAMPLE_RATE, bpm=120.0)
