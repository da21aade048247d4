"""
Tests for the WSOLA engine.
"""
import pytest
import numpy as np

from conftest import dominant_frequency, sine
from stretchcore.core.config import CorrelationMode, WsolaPreset
from stretchcore.core.errors import CancellationError, ValidationError
from stretchcore.core.parallel import CancellationToken
from stretchcore.core.wsola import (
    CorrelationTrack,
    WsolaEngine,
    WsolaParams,
    WsolaPlan,
    correlation_signals,
    equal_power_ramps,
    find_best_match,
)


class TestWsolaPlan:
    """Tests for derived geometry."""

    def test_default_geometry(self):
        plan = WsolaPlan.build(1.5, WsolaParams())
        assert plan.hop_a == 1024
        assert plan.hop_s == 1536
        assert plan.actual_overlap == 512
        assert plan.search_radius == 1024
        assert plan.search_step == 8

    @pytest.mark.parametrize("factor,expected", [(20.0, 8.0), (0.01, 0.05), (1.2, 1.2)])
    def test_factor_clamp(self, factor, expected):
        assert WsolaPlan.build(factor, WsolaParams()).factor == expected

    def test_frame_and_overlap_clamp(self):
        plan = WsolaPlan.build(1.0, WsolaParams(frame_size=64, overlap=1000))
        assert plan.frame_size == 256
        assert plan.overlap == 192

    def test_from_preset(self):
        params = WsolaParams.from_preset(WsolaPreset.BALANCED)
        assert params.frame_size == 8192
        assert params.overlap == 4096
        assert params.search_radius == 4096
        assert params.search_step == 8
        assert params.correlation_mode is CorrelationMode.MID_SIDE
        assert params.side_weight == 0.60
        assert params.correlation_stride == 2

    def test_correlation_settings_clamp(self):
        plan = WsolaPlan.build(1.0, WsolaParams(side_weight=5.0, correlation_stride=40))
        assert plan.side_weight == 2.0
        assert plan.correlation_stride == 16
        plan = WsolaPlan.build(1.0, WsolaParams(side_weight=-1.0, correlation_stride=0))
        assert plan.side_weight == 0.0
        assert plan.correlation_stride == 1


class TestHelpers:
    """Tests for ramps and the similarity search."""

    def test_equal_power_ramps(self):
        fade_in, fade_out = equal_power_ramps(256)
        assert np.allclose(fade_in ** 2 + fade_out ** 2, 1.0, atol=1e-6)
        assert fade_in[0] < fade_in[-1]

    def test_finds_exact_match(self):
        rng = np.random.default_rng(0)
        mono = rng.standard_normal(4000)
        reference = mono[523:523 + 64]
        best = find_best_match([CorrelationTrack.build(mono)], [reference], 500, 64, 1, 256)
        assert best == 523

    def test_ties_resolve_to_first_candidate(self):
        mono = np.ones(1000)
        best = find_best_match([CorrelationTrack.build(mono)], [np.ones(16)], 500, 100, 8, 64)
        assert best == 400

    def test_strided_search_finds_exact_match(self):
        rng = np.random.default_rng(0)
        mono = rng.standard_normal(4000)
        reference = mono[523:523 + 64]
        best = find_best_match([CorrelationTrack.build(mono)], [reference], 500, 64, 1, 256, stride=4)
        assert best == 523

    def test_correlation_signals(self):
        frames = np.array([[1.0, 0.5], [0.0, -1.0]], dtype=np.float32)
        (mono,) = correlation_signals(frames, CorrelationMode.MONO)
        assert np.allclose(mono, [0.75, -0.5])
        left, right = correlation_signals(frames, CorrelationMode.STEREO)
        assert np.allclose(left, [1.0, 0.0])
        assert np.allclose(right, [0.5, -1.0])
        mid, side = correlation_signals(frames, CorrelationMode.MID_SIDE)
        assert np.allclose(mid, [0.75, -0.5])
        assert np.allclose(side, [0.25, 0.5])

    def test_single_channel_signals_are_mono(self):
        frames = np.ones((8, 1), dtype=np.float32)
        assert len(correlation_signals(frames, CorrelationMode.MID_SIDE)) == 1


class TestWsolaEngine:
    """Tests for WsolaEngine.stretch."""

    def test_stretch_keeps_pitch(self, sample_mono_audio):
        result = WsolaEngine().stretch(sample_mono_audio, 1.5)
        assert result.changed
        assert result.frames.shape[1] == 1
        freq = dominant_frequency(result.frames[:, 0], 44100)
        assert abs(freq - 440.0) / 440.0 < 0.02

    def test_output_length(self, sample_mono_audio):
        result = WsolaEngine().stretch(sample_mono_audio, 1.5)
        n = result.frames.shape[0]
        assert result.provisional_frames == 66150
        assert n <= result.provisional_frames
        assert 66150 - 2 * 2048 <= n

    def test_placements_follow_synthesis_hop(self, sample_mono_audio):
        result = WsolaEngine().stretch(sample_mono_audio, 1.5)
        out_positions = [p[0] for p in result.placements]
        assert out_positions == [1536 * (k + 1) for k in range(len(out_positions))]
        in_positions = [p[1] for p in result.placements]
        for k, in_pos in enumerate(in_positions):
            predicted = 1024 * (k + 1)
            assert abs(in_pos - predicted) <= result.plan.search_radius

    def test_seed_frame_is_copied(self, sample_mono_audio):
        result = WsolaEngine().stretch(sample_mono_audio, 0.75)
        assert np.array_equal(
            result.frames[:result.plan.hop_s, 0], sample_mono_audio[:result.plan.hop_s]
        )

    def test_stereo_channels_preserved(self, sample_stereo_audio):
        result = WsolaEngine(WsolaParams(frame_size=1024, overlap=512)).stretch(sample_stereo_audio, 1.25)
        assert result.frames.shape[1] == 2
        assert np.all(np.isfinite(result.frames))

    def test_short_input_unchanged(self):
        short = np.ones((2050, 1), dtype=np.float32)
        result = WsolaEngine().stretch(short, 1.5)
        assert not result.changed
        assert np.array_equal(result.frames, short)

    def test_rejects_bad_factor(self, sample_mono_audio):
        with pytest.raises(ValidationError):
            WsolaEngine().stretch(sample_mono_audio, -1.0)

    def test_cancellation(self, sample_mono_audio):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancellationError):
            WsolaEngine().stretch(sample_mono_audio, 1.5, cancel=token)

    def test_compression(self):
        audio = sine(440.0, seconds=2.0)
        result = WsolaEngine().stretch(audio, 0.5)
        assert result.frames.shape[0] <= 44100
        freq = dominant_frequency(result.frames[:, 0], 44100)
        assert abs(freq - 440.0) / 440.0 < 0.02

    def test_gap_stays_silent_when_hop_exceeds_frame(self, sample_mono_audio):
        result = WsolaEngine().stretch(sample_mono_audio, 3.0)
        assert result.plan.hop_s == 3072
        assert result.placements[0][0] == 3072
        assert np.all(result.frames[2048:3072] == 0.0)


class TestCorrelationModes:
    """Tests for mono, stereo and mid/side splice scoring."""

    @staticmethod
    def wide_stereo():
        # L = -R: the mono downmix is exactly zero
        noise = np.random.default_rng(7).standard_normal(20000).astype(np.float32)
        return np.column_stack((noise, -noise))

    def test_mid_side_picks_different_splice_than_mono(self):
        audio = self.wide_stereo()
        mono = WsolaEngine(WsolaParams(correlation_mode=CorrelationMode.MONO)).stretch(audio, 1.5)
        mid_side = WsolaEngine(
            WsolaParams(correlation_mode=CorrelationMode.MID_SIDE, side_weight=1.0)
        ).stretch(audio, 1.5)
        # Flat mono scores fall back to the first candidate
        assert mono.placements[0] == (1536, 0)
        # The side signal finds the seed frame's own continuation
        assert mid_side.placements[0] == (1536, 1536)
        assert mid_side.correlation_mode is CorrelationMode.MID_SIDE

    def test_stereo_mode_scores_each_channel(self):
        result = WsolaEngine(WsolaParams(correlation_mode=CorrelationMode.STEREO)).stretch(
            self.wide_stereo(), 1.5
        )
        assert result.placements[0] == (1536, 1536)
        assert result.correlation_mode is CorrelationMode.STEREO

    def test_stride_one_matches_default(self, sample_stereo_audio):
        default = WsolaEngine().stretch(sample_stereo_audio, 1.3)
        explicit = WsolaEngine(
            WsolaParams(correlation_mode=CorrelationMode.MONO, correlation_stride=1)
        ).stretch(sample_stereo_audio, 1.3)
        assert explicit.placements == default.placements
        assert np.array_equal(explicit.frames, default.frames)

    def test_strided_search_stays_in_radius(self, sample_stereo_audio):
        result = WsolaEngine(WsolaParams(correlation_stride=4)).stretch(sample_stereo_audio, 1.3)
        for k, (_, in_pos) in enumerate(result.placements):
            assert abs(in_pos - result.plan.hop_a * (k + 1)) <= result.plan.search_radius

    def test_stereo_modes_fall_back_to_mono(self, sample_mono_audio):
        default = WsolaEngine().stretch(sample_mono_audio, 1.5)
        result = WsolaEngine(
            WsolaParams(correlation_mode=CorrelationMode.MID_SIDE)
        ).stretch(sample_mono_audio, 1.5)
        assert result.correlation_mode is CorrelationMode.MONO
        assert result.placements == default.placements
