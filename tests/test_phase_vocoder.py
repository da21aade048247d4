"""
Tests for the phase vocoder engine.
"""
import pytest
import numpy as np

from stretchcore.core.chunker import Chunker, ChunkSet
from stretchcore.core.config import PhaseVocoderMode
from stretchcore.core.errors import ComputationError, ValidationError
from stretchcore.core.overlap_add import hann_window
from stretchcore.core.phase_vocoder import (
    ScipyFFTBackend,
    SpectralStretchEngine,
    accumulate_phases,
    adjust_phases,
    expected_phase_advance,
    is_power_of_two,
    wrap_phase,
)


class TestHelpers:
    """Tests for phase helpers."""

    def test_is_power_of_two(self):
        assert is_power_of_two(1)
        assert is_power_of_two(2048)
        assert not is_power_of_two(0)
        assert not is_power_of_two(1000)

    def test_wrap_phase_range(self):
        angles = np.linspace(-20, 20, 1001)
        wrapped = wrap_phase(angles)
        assert np.all(wrapped >= -np.pi)
        assert np.all(wrapped <= np.pi)
        assert np.allclose(np.exp(1j * wrapped), np.exp(1j * angles))

    def test_expected_advance_is_linear_in_bin(self):
        adv = expected_phase_advance(1024, 512, 44100)
        assert adv[0] == 0.0
        assert np.isclose(adv[1], 2 * np.pi * 512 / 1024)
        assert np.isclose(adv[10], 10 * adv[1])

    def test_zero_magnitude_bins_get_zero_phase(self):
        spectra = np.zeros((2, 8, 1), dtype=np.complex128)
        spectra[:, 1, 0] = 1j
        out = adjust_phases(spectra, 1.5, 4, 8000)
        assert np.all(out[1, 0] == 0)
        assert np.isclose(np.abs(out[1, 1, 0]), 1.0)

    def test_accumulated_phase_scales_true_advance(self):
        # sr 8, chunk 8, hop 2: bin 1 advances pi/2 per chunk
        spectra = np.zeros((3, 8, 1), dtype=np.complex128)
        spectra[:, 1, 0] = np.exp(1j * np.array([0.0, np.pi / 2, np.pi]))
        out = accumulate_phases(spectra, 2.0, 2, 8)
        assert np.allclose(out[:, 1, 0], np.exp(1j * np.array([0.0, np.pi, 2 * np.pi])))
        assert np.all(out[:, 0, 0] == 0)

    def test_accumulated_phase_identity_at_unit_ratio(self):
        rng = np.random.default_rng(3)
        spectra = rng.standard_normal((4, 16, 2)) + 1j * rng.standard_normal((4, 16, 2))
        out = accumulate_phases(spectra, 1.0, 4, 16)
        assert np.allclose(out, spectra)


class TestSpectralStretchEngine:
    """Tests for SpectralStretchEngine.stretch."""

    def test_factor_one_reconstructs_chunks(self, sample_mono_audio):
        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.5)
        out = SpectralStretchEngine(workers=2).stretch(chunk_set, 1.0, 44100)
        assert out.shape == chunk_set.chunks.shape
        assert out.dtype == np.float32
        assert np.allclose(out, chunk_set.chunks, atol=1e-4)

    def test_stretch_keeps_shape_and_is_finite(self, sample_stereo_audio):
        chunk_set = Chunker().split(sample_stereo_audio, 1024, 0.5)
        out = SpectralStretchEngine(workers=2).stretch(chunk_set, 1.7, 44100)
        assert out.shape == chunk_set.chunks.shape
        assert out.dtype == np.float32
        assert np.all(np.isfinite(out))

    def test_first_chunk_passes_through(self, sample_mono_audio):
        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.5)
        out = SpectralStretchEngine().stretch(chunk_set, 2.0, 44100)
        assert np.allclose(out[0], chunk_set.chunks[0], atol=1e-4)

    def test_empty_set_returned_unchanged(self):
        empty = ChunkSet.empty(2048, 2)
        out = SpectralStretchEngine().stretch(empty, 1.5, 44100)
        assert out is empty.chunks

    def test_rejects_non_power_of_two(self, sample_mono_audio):
        chunk_set = Chunker().split(sample_mono_audio, 1000, 0.5)
        with pytest.raises(ValidationError):
            SpectralStretchEngine().stretch(chunk_set, 1.5, 44100)

    @pytest.mark.parametrize("factor", [0.0, -1.0, float("nan"), float("inf")])
    def test_rejects_bad_factor(self, sample_mono_audio, factor):
        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.5)
        with pytest.raises(ValidationError):
            SpectralStretchEngine().stretch(chunk_set, factor, 44100)

    def test_non_finite_spectrum_raises(self):
        data = np.zeros(10000, dtype=np.float32)
        data[5] = np.inf
        chunk_set = Chunker().split(data, 2048, 0.5)
        with pytest.raises(ComputationError):
            SpectralStretchEngine().stretch(chunk_set, 1.2, 44100)

    def test_custom_backend_is_used(self, sample_mono_audio):
        calls = []

        class RecordingBackend(ScipyFFTBackend):
            def forward(self, frames):
                calls.append("forward")
                return super().forward(frames)

        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.5)
        SpectralStretchEngine(backend=RecordingBackend()).stretch(chunk_set, 1.1, 44100)
        assert len(calls) == len(chunk_set)


class TestStftMode:
    """Tests for the windowed STFT flavour."""

    def test_factor_one_returns_windowed_chunks(self, sample_stereo_audio):
        chunk_set = Chunker().split(sample_stereo_audio, 1024, 0.75)
        out = SpectralStretchEngine(workers=2).stretch(
            chunk_set, 1.0, 44100, mode=PhaseVocoderMode.STFT
        )
        window = hann_window(1024)[:, np.newaxis]
        assert out.shape == chunk_set.chunks.shape
        assert np.allclose(out, chunk_set.chunks * window, atol=1e-4)

    def test_stretch_is_finite(self, sample_mono_audio):
        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.75)
        out = SpectralStretchEngine().stretch(chunk_set, 1.5, 44100, mode=PhaseVocoderMode.STFT)
        assert out.dtype == np.float32
        assert np.all(np.isfinite(out))

    def test_differs_from_chunked_mode(self, sample_mono_audio):
        chunk_set = Chunker().split(sample_mono_audio, 2048, 0.75)
        engine = SpectralStretchEngine()
        chunked = engine.stretch(chunk_set, 1.5, 44100)
        stft = engine.stretch(chunk_set, 1.5, 44100, mode=PhaseVocoderMode.STFT)
        assert not np.allclose(chunked, stft, atol=1e-3)
