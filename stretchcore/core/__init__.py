"""
stretchcore Core Module

This module contains the DSP engine:
- SampleBuffer: interleaved PCM buffer with tempo metadata
- Chunker: overlapping fixed-size frames
- SpectralStretchEngine: phase vocoder over chunks
- OverlapAddAggregator: windowed reconstruction of stretched chunks
- WsolaEngine: time-domain stretch by waveform similarity
- Resampler: anti-alias biquad + Catmull-Rom sample-rate conversion
- Normalizer: parallel peak normalization
- processor: pipelines that swap results into a buffer atomically
"""
from .buffer import SampleBuffer
from .chunker import Chunker, ChunkSet, split_into_chunks
from .phase_vocoder import SpectralStretchEngine, ScipyFFTBackend
from .overlap_add import OverlapAddAggregator, StretchSession
from .wsola import WsolaEngine, WsolaParams, WsolaResult
from .resampler import Resampler, BiquadCoefficients, design_lowpass
from .normalizer import Normalizer
from .parallel import CancellationToken, ProgressTracker, resolve_workers
from .processor import PhaseVocoderParams, time_stretch, resample, normalize
from .errors import StretchError, ValidationError, CancellationError, ComputationError
from .config import (
    PHASE_VOCODER_CONFIG,
    WSOLA_CONFIG,
    RESAMPLE_CONFIG,
    AGGREGATE_CONFIG,
    NORMALIZE_CONFIG,
    StretchAlgorithm,
    PhaseVocoderMode,
    WsolaPreset,
    CorrelationMode,
)

__all__ = [
    # Data model
    'SampleBuffer',
    'ChunkSet',
    'StretchSession',
    'BiquadCoefficients',
    # Components
    'Chunker',
    'SpectralStretchEngine',
    'ScipyFFTBackend',
    'OverlapAddAggregator',
    'WsolaEngine',
    'WsolaParams',
    'WsolaResult',
    'Resampler',
    'Normalizer',
    'split_into_chunks',
    'design_lowpass',
    # Pipelines
    'PhaseVocoderParams',
    'time_stretch',
    'resample',
    'normalize',
    # Concurrency
    'CancellationToken',
    'ProgressTracker',
    'resolve_workers',
    # Errors
    'StretchError',
    'ValidationError',
    'CancellationError',
    'ComputationError',
    # Config
    'PHASE_VOCODER_CONFIG',
    'WSOLA_CONFIG',
    'RESAMPLE_CONFIG',
    'AGGREGATE_CONFIG',
    'NORMALIZE_CONFIG',
    'StretchAlgorithm',
    'PhaseVocoderMode',
    'WsolaPreset',
    'CorrelationMode',
]
