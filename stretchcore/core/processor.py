"""
High-level pipelines over a SampleBuffer.

Every pipeline validates its parameters first, computes into fresh arrays
stage by stage, and only swaps the result into the buffer once every stage
has finished. A failure or cancellation leaves the buffer exactly as it was.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional, Union
import numpy as np

from ..utils.logger import logger
from .buffer import SampleBuffer
from .chunker import Chunker, chunk_geometry
from .config import (
    NORMALIZE_CONFIG, PHASE_VOCODER_CONFIG, RESAMPLE_CONFIG, WSOLA_CONFIG, PhaseVocoderMode,
    StretchAlgorithm,
)
from .errors import CancellationError, ComputationError, ValidationError
from .normalizer import Normalizer
from .overlap_add import OverlapAddAggregator
from .parallel import CancelSignal, ProgressTracker, check_cancelled, resolve_workers
from .phase_vocoder import SpectralStretchEngine, is_power_of_two
from .resampler import Resampler
from .types import ProgressCallback, SpectralBackend, StepCallback
from .wsola import WsolaEngine, WsolaParams


WSOLA_PROGRESS_UNITS = 1000


@dataclass(frozen=True)
class PhaseVocoderParams:
    """
    Caller-facing phase vocoder parameters.

    Attributes:
        chunk_size: FFT size in frames (power of two)
        overlap: Chunk overlap ratio in [0, 1)
        normalize: Target peak after aggregation, 0 disables
        mode: CHUNKED (rectangular chunks) or STFT (Hann analysis window)
    """
    chunk_size: int = PHASE_VOCODER_CONFIG.chunk_size
    overlap: float = PHASE_VOCODER_CONFIG.overlap
    normalize: float = PHASE_VOCODER_CONFIG.normalize
    mode: PhaseVocoderMode = PhaseVocoderMode.CHUNKED


StretchParams = Union[PhaseVocoderParams, WsolaParams]

_PARAM_TYPES = {
    StretchAlgorithm.PHASE_VOCODER: PhaseVocoderParams,
    StretchAlgorithm.WSOLA: WsolaParams,
}


def default_params(algorithm: StretchAlgorithm) -> StretchParams:
    return _PARAM_TYPES[algorithm]()


def _validate_factor(factor: float) -> None:
    try:
        value = float(factor)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"factor must be a number, got {factor!r}") from e
    if not (math.isfinite(value) and value > 0):
        raise ValidationError(f"factor must be a finite value > 0, got {factor}")


def _validate_phase_vocoder(params: PhaseVocoderParams) -> None:
    if not is_power_of_two(params.chunk_size):
        raise ValidationError(f"chunk_size must be a power of two, got {params.chunk_size}")
    if not (0.0 <= params.overlap < 1.0):
        raise ValidationError(f"overlap must be in [0, 1), got {params.overlap}")
    if params.normalize < 0:
        raise ValidationError(f"normalize must be >= 0, got {params.normalize}")
    if not isinstance(params.mode, PhaseVocoderMode):
        raise ValidationError(f"mode must be a PhaseVocoderMode, got {params.mode!r}")


def _scaled_bpm(bpm: Optional[float], factor: float, threshold: float = 0.0) -> Optional[float]:
    if bpm is None or bpm <= threshold:
        return None
    return bpm / factor


def _ensure_finite(data: np.ndarray, stage: str) -> None:
    if not np.all(np.isfinite(data)):
        raise ComputationError(f"{stage} produced non-finite samples")


# =============================================================================
# TIME STRETCH
# =============================================================================

def time_stretch(
    buffer: SampleBuffer,
    factor: float,
    algorithm: StretchAlgorithm = StretchAlgorithm.PHASE_VOCODER,
    params: Optional[StretchParams] = None,
    *,
    max_workers: Optional[int] = None,
    cancel: CancelSignal = None,
    progress: Optional[ProgressCallback] = None,
    on_step: Optional[StepCallback] = None,
    backend: Optional[SpectralBackend] = None,
) -> SampleBuffer:
    """
    Change the duration of ``buffer`` by ``factor`` while keeping its pitch.

    Args:
        buffer: Buffer to stretch; replaced in place on success
        factor: Duration factor (>1 = longer/slower, <1 = shorter/faster)
        algorithm: PHASE_VOCODER or WSOLA
        params: PhaseVocoderParams or WsolaParams matching ``algorithm``
        max_workers: Worker pool size (None = all cores)
        cancel: CancellationToken or threading.Event
        progress: Called with a monotonic fraction, last value exactly 1.0
        on_step: Called with (done, total) work units
        backend: FFT backend for the phase vocoder

    Returns:
        The same buffer instance

    Raises:
        ValidationError: bad factor or parameters (nothing was touched)
        CancellationError: cancelled mid-way (buffer unchanged)
        ComputationError: numerical failure (buffer unchanged)
    """
    if params is None:
        params = default_params(algorithm)
    expected = _PARAM_TYPES[algorithm]
    if not isinstance(params, expected):
        raise ValidationError(
            f"{algorithm.name} expects {expected.__name__}, got {type(params).__name__}"
        )
    _validate_factor(factor)
    workers = resolve_workers(max_workers)

    logger.info(
        "Starting %s time stretch (factor=%.4f, frames=%d, channels=%d, workers=%d)",
        algorithm.name, factor, buffer.frames, buffer.channels, workers,
    )
    try:
        if algorithm is StretchAlgorithm.PHASE_VOCODER:
            _validate_phase_vocoder(params)
            _stretch_phase_vocoder(buffer, factor, params, workers, cancel, progress, on_step, backend)
        else:
            _stretch_wsola(buffer, factor, params, workers, cancel, progress, on_step)
    except CancellationError:
        logger.info("%s time stretch cancelled, buffer left unchanged", algorithm.name)
        raise
    except ComputationError as e:
        logger.error("%s time stretch failed: %s", algorithm.name, e, exc_info=True)
        raise
    return buffer


def _stretch_phase_vocoder(
    buffer: SampleBuffer,
    factor: float,
    params: PhaseVocoderParams,
    workers: int,
    cancel: CancelSignal,
    progress: Optional[ProgressCallback],
    on_step: Optional[StepCallback],
    backend: Optional[SpectralBackend],
) -> None:
    if buffer.is_empty:
        logger.debug("Empty buffer, nothing to stretch")
        _finish(progress, on_step)
        return

    _, _, count = chunk_geometry(buffer.frames, params.chunk_size, params.overlap)
    # chunking, FFT, phase adjust, IFFT, aggregate (+ normalize)
    stages = 5
    tracker = ProgressTracker(count * stages + (1 if params.normalize > 0 else 0), progress, on_step)

    chunk_set = Chunker(workers).split(buffer, params.chunk_size, params.overlap, cancel, tracker)
    if len(chunk_set) == 0:
        tracker.complete()
        return

    engine = SpectralStretchEngine(workers, backend)
    stretched = engine.stretch(chunk_set, factor, buffer.sample_rate, cancel, tracker, params.mode)

    aggregator = OverlapAddAggregator(workers)
    frames = aggregator.aggregate(
        stretched, factor, chunk_set.chunk_size, chunk_set.overlap_size, cancel, tracker
    )
    if frames.shape[0] == 0:
        tracker.complete()
        return
    _ensure_finite(frames, "Overlap-add")

    if params.normalize > 0:
        frames = Normalizer(workers).normalize(frames, params.normalize, cancel=cancel, tracker=tracker)

    check_cancelled(cancel)
    buffer.replace(
        frames.reshape(-1),
        stretch_factor=factor,
        bpm=_scaled_bpm(buffer.bpm, factor),
    )
    tracker.complete()
    logger.info("Phase vocoder stretch finished: %d frames", buffer.frames)


def _stretch_wsola(
    buffer: SampleBuffer,
    factor: float,
    params: WsolaParams,
    workers: int,
    cancel: CancelSignal,
    progress: Optional[ProgressCallback],
    on_step: Optional[StepCallback],
) -> None:
    tracker = ProgressTracker(WSOLA_PROGRESS_UNITS, progress, on_step)
    if buffer.is_empty:
        logger.debug("Empty buffer, nothing to stretch")
        tracker.complete()
        return

    result = WsolaEngine(params).stretch(buffer.as_frames(), factor, cancel, tracker)
    if not result.changed:
        tracker.complete()
        return

    frames = result.frames
    _ensure_finite(frames, "WSOLA")
    if params.normalize:
        frames = Normalizer(workers).normalize(
            frames,
            WSOLA_CONFIG.normalize_peak,
            threshold=WSOLA_CONFIG.normalize_threshold,
            cancel=cancel,
        )

    check_cancelled(cancel)
    applied = result.plan.factor
    buffer.replace(
        frames.reshape(-1),
        stretch_factor=applied,
        bpm=_scaled_bpm(buffer.bpm, applied, WSOLA_CONFIG.bpm_threshold),
    )
    tracker.complete()
    logger.info(
        "WSOLA stretch finished: %d blocks, %d frames", len(result.placements), buffer.frames
    )


# =============================================================================
# RESAMPLE / NORMALIZE
# =============================================================================

def resample(
    buffer: SampleBuffer,
    target_rate: int,
    *,
    max_workers: Optional[int] = None,
    cancel: CancelSignal = None,
    progress: Optional[ProgressCallback] = None,
    on_step: Optional[StepCallback] = None,
) -> SampleBuffer:
    """
    Convert ``buffer`` to ``target_rate`` Hz in place (atomic swap).

    Equal rates and empty buffers are no-ops.
    """
    if target_rate <= 0:
        raise ValidationError(f"target_rate must be > 0, got {target_rate}")
    source_rate = buffer.sample_rate
    workers = resolve_workers(max_workers)

    if source_rate == target_rate or buffer.is_empty:
        logger.debug("Resample skipped (%d -> %d Hz)", source_rate, target_rate)
        _finish(progress, on_step)
        return buffer

    out_frames = int(round(buffer.frames * target_rate / source_rate))
    blocks = max(1, math.ceil(out_frames / RESAMPLE_CONFIG.block_frames))
    tracker = ProgressTracker(blocks, progress, on_step)

    logger.info("Resampling %d frames %d -> %d Hz", buffer.frames, source_rate, target_rate)
    try:
        samples = Resampler(workers).resample_interleaved(
            buffer.samples, source_rate, target_rate, buffer.channels, cancel, tracker
        )
        _ensure_finite(samples, "Resample")
        check_cancelled(cancel)
    except CancellationError:
        logger.info("Resample cancelled, buffer left unchanged")
        raise
    except ComputationError as e:
        logger.error("Resample failed: %s", e, exc_info=True)
        raise

    buffer.replace(samples, sample_rate=target_rate)
    tracker.complete()
    return buffer


def normalize(
    buffer: SampleBuffer,
    amplitude: float = NORMALIZE_CONFIG.default_amplitude,
    *,
    max_workers: Optional[int] = None,
    cancel: CancelSignal = None,
) -> SampleBuffer:
    """Peak-normalize ``buffer`` to ``amplitude`` in place (atomic swap)."""
    if not (math.isfinite(amplitude) and amplitude > 0):
        raise ValidationError(f"amplitude must be a finite value > 0, got {amplitude}")
    if buffer.is_empty:
        return buffer
    result = Normalizer(resolve_workers(max_workers)).normalize(
        buffer.samples, amplitude, cancel=cancel
    )
    if result is not buffer.samples:
        buffer.replace(result)
    return buffer


def _finish(progress: Optional[ProgressCallback], on_step: Optional[StepCallback]) -> None:
    ProgressTracker(1, progress, on_step).complete()
