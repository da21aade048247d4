"""
Centralized configuration for stretchcore.
All magic numbers and default settings in one place.
"""
from dataclasses import dataclass
from enum import Enum, auto


class StretchAlgorithm(Enum):
    """Time-stretch algorithm chosen explicitly by the caller."""
    PHASE_VOCODER = auto()
    WSOLA = auto()


class PhaseVocoderMode(Enum):
    """Phase vocoder flavour."""
    CHUNKED = auto()  # Rectangular chunks, phase re-advanced per chunk
    STFT = auto()     # Hann analysis window, accumulated phase


class CorrelationMode(Enum):
    """Signal(s) WSOLA correlates when choosing a splice point."""
    MONO = auto()      # Downmix of all channels
    STEREO = auto()    # L and R scored separately, summed
    MID_SIDE = auto()  # Mid plus side_weight * side


class WsolaPreset(Enum):
    """WSOLA quality/speed presets."""
    FAST = auto()
    BALANCED = auto()
    BEST = auto()


@dataclass(frozen=True, slots=True)
class PhaseVocoderConfig:
    """Phase vocoder (chunked FFT) defaults."""
    chunk_size: int = 2048
    overlap: float = 0.5
    normalize: float = 1.0  # Target peak, 0 disables


@dataclass(frozen=True, slots=True)
class WsolaConfig:
    """WSOLA defaults and clamping bounds (all in frames)."""
    frame_size: int = 2048
    overlap: int = 1024
    min_frame_size: int = 256
    max_frame_size: int = 16384
    min_overlap: int = 64
    overlap_margin: int = 64  # overlap <= frame_size - margin
    min_factor: float = 0.05
    max_factor: float = 8.0
    search_step: int = 8
    min_search_radius: int = 128
    max_search_radius: int = 2048
    normalize_peak: float = 0.99
    normalize_threshold: float = 1e-6
    bpm_threshold: float = 1e-3
    correlation_epsilon: float = 1e-12
    side_weight: float = 0.75
    max_side_weight: float = 2.0
    correlation_stride: int = 1
    max_correlation_stride: int = 16


@dataclass(frozen=True, slots=True)
class WsolaPresetConfig:
    """One WSOLA preset: window geometry, search and correlation settings."""
    frame_size: int
    overlap_ratio: float
    radius_multiplier: float
    search_step: int
    correlation_mode: CorrelationMode
    side_weight: float
    correlation_stride: int


@dataclass(frozen=True, slots=True)
class ResampleConfig:
    """Anti-alias filter and interpolation settings."""
    q: float = 0.707
    cutoff_ratio: float = 0.45  # Fraction of the target Nyquist
    min_cutoff_hz: float = 10.0
    block_frames: int = 8192


@dataclass(frozen=True, slots=True)
class AggregateConfig:
    """Overlap-add reconstruction settings."""
    weight_epsilon: float = 1e-6
    normalize_block: int = 65536


@dataclass(frozen=True, slots=True)
class NormalizeConfig:
    """Peak normalization settings."""
    default_amplitude: float = 1.0
    block_size: int = 262144


# Global config instances (immutable singletons)
PHASE_VOCODER_CONFIG = PhaseVocoderConfig()
WSOLA_CONFIG = WsolaConfig()
RESAMPLE_CONFIG = ResampleConfig()
AGGREGATE_CONFIG = AggregateConfig()
NORMALIZE_CONFIG = NormalizeConfig()

WSOLA_PRESETS: dict[WsolaPreset, WsolaPresetConfig] = {
    WsolaPreset.FAST: WsolaPresetConfig(
        frame_size=4096, overlap_ratio=0.35, radius_multiplier=0.75, search_step=16,
        correlation_mode=CorrelationMode.MONO, side_weight=0.0, correlation_stride=4,
    ),
    WsolaPreset.BALANCED: WsolaPresetConfig(
        frame_size=8192, overlap_ratio=0.50, radius_multiplier=1.0, search_step=8,
        correlation_mode=CorrelationMode.MID_SIDE, side_weight=0.60, correlation_stride=2,
    ),
    WsolaPreset.BEST: WsolaPresetConfig(
        frame_size=16384, overlap_ratio=0.75, radius_multiplier=1.5, search_step=4,
        correlation_mode=CorrelationMode.MID_SIDE, side_weight=0.75, correlation_stride=1,
    ),
}
