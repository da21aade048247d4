"""
Sample-rate conversion.

Downsampling first runs a 2nd-order RBJ lowpass (anti-alias) over each
channel, then every output frame is Catmull-Rom interpolated from the four
neighbouring source frames. Upsampling skips the filter.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional
import numpy as np
from scipy.signal import lfilter

from ..utils.logger import logger
from .config import RESAMPLE_CONFIG
from .errors import ValidationError
from .parallel import CancelSignal, ProgressTracker, block_ranges, run_parallel
from .types import FrameArray, InterleavedArray


@dataclass(frozen=True, slots=True)
class BiquadCoefficients:
    """Biquad coefficients normalized by a0."""
    b0: float
    b1: float
    b2: float
    a1: float
    a2: float

    @property
    def b(self) -> np.ndarray:
        return np.array([self.b0, self.b1, self.b2])

    @property
    def a(self) -> np.ndarray:
        return np.array([1.0, self.a1, self.a2])


def design_lowpass(cutoff: float, sample_rate: float, Q: float = RESAMPLE_CONFIG.q) -> BiquadCoefficients:
    """
    RBJ cookbook lowpass.

    Args:
        cutoff: -3 dB frequency in Hz
        sample_rate: Rate the filter runs at
        Q: Quality factor (0.707 = Butterworth)
    """
    omega = 2 * math.pi * cutoff / sample_rate
    sn, cs = math.sin(omega), math.cos(omega)
    alpha = sn / (2 * Q)

    b0 = (1 - cs) / 2
    b1 = 1 - cs
    b2 = (1 - cs) / 2
    a0 = 1 + alpha
    a1 = -2 * cs
    a2 = 1 - alpha

    return BiquadCoefficients(b0 / a0, b1 / a0, b2 / a0, a1 / a0, a2 / a0)


def anti_alias_cutoff(target_rate: int) -> float:
    nyquist = 0.5 * target_rate
    return max(RESAMPLE_CONFIG.min_cutoff_hz, RESAMPLE_CONFIG.cutoff_ratio * nyquist)


def catmull_rom(p0, p1, p2, p3, t):
    """Catmull-Rom spline through p1..p2 at t in [0, 1)."""
    t2 = t * t
    t3 = t2 * t
    return 0.5 * (
        2.0 * p1
        + (p2 - p0) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (3.0 * p1 - p0 - 3.0 * p2 + p3) * t3
    )


def output_length(in_frames: int, source_rate: int, target_rate: int) -> int:
    return int(round(in_frames * target_rate / source_rate))


class Resampler:
    """Anti-alias biquad + Catmull-Rom resampler on the worker pool."""

    def __init__(self, workers: int = 1, block_frames: int = RESAMPLE_CONFIG.block_frames):
        self.workers = max(1, int(workers))
        self.block_frames = block_frames

    def lowpass(
        self,
        frames: FrameArray,
        coefficients: BiquadCoefficients,
        cancel: CancelSignal = None,
    ) -> np.ndarray:
        """Run the biquad over each channel; channels in parallel, frames in order."""
        filtered = np.empty(frames.shape, dtype=np.float64)
        b, a = coefficients.b, coefficients.a

        def filter_channel(channel: int) -> None:
            filtered[:, channel] = lfilter(b, a, frames[:, channel].astype(np.float64))

        run_parallel(filter_channel, range(frames.shape[1]), self.workers, cancel)
        return filtered

    def interpolate(
        self,
        source: np.ndarray,
        ratio: float,
        out_frames: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> FrameArray:
        """Catmull-Rom read of ``source`` at ``out * ratio`` for every output frame."""
        in_frames, channels = source.shape
        output = np.empty((out_frames, channels), dtype=np.float32)
        last = in_frames - 1

        def interpolate_block(span: tuple[int, int]) -> None:
            start, end = span
            pos = np.arange(start, end, dtype=np.float64) * ratio
            base = np.floor(pos).astype(np.int64)
            t = (pos - base)[:, np.newaxis]
            i0 = np.clip(base - 1, 0, last)
            i1 = np.clip(base, 0, last)
            i2 = np.clip(base + 1, 0, last)
            i3 = np.clip(base + 2, 0, last)
            output[start:end] = catmull_rom(source[i0], source[i1], source[i2], source[i3], t)

        run_parallel(
            interpolate_block,
            block_ranges(out_frames, self.block_frames),
            self.workers,
            cancel,
            tracker,
        )
        return output

    def resample(
        self,
        frames: FrameArray,
        source_rate: int,
        target_rate: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> FrameArray:
        """
        Resample (frames, channels) audio from ``source_rate`` to ``target_rate``.

        Returns:
            New (frames, channels) float32 array, or the input for equal rates
            or an empty buffer.

        Raises:
            ValidationError: a rate is not positive
        """
        if source_rate <= 0 or target_rate <= 0:
            raise ValidationError(
                f"Sample rates must be > 0 (source={source_rate}, target={target_rate})"
            )
        data = np.asarray(frames, dtype=np.float32)
        if data.ndim == 1:
            data = data[:, np.newaxis]
        if source_rate == target_rate or data.shape[0] == 0:
            logger.debug("Resample skipped (%d -> %d Hz, %d frames)", source_rate, target_rate, data.shape[0])
            return data

        if target_rate < source_rate:
            cutoff = anti_alias_cutoff(target_rate)
            coefficients = design_lowpass(cutoff, source_rate)
            logger.debug("Anti-alias lowpass at %.1f Hz (%d -> %d Hz)", cutoff, source_rate, target_rate)
            source = self.lowpass(data, coefficients, cancel)
        else:
            source = data.astype(np.float64)

        out_frames = output_length(data.shape[0], source_rate, target_rate)
        ratio = source_rate / target_rate
        return self.interpolate(source, ratio, out_frames, cancel, tracker)

    def resample_interleaved(
        self,
        samples: InterleavedArray,
        source_rate: int,
        target_rate: int,
        channels: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> InterleavedArray:
        """Interleaved variant of :meth:`resample`."""
        if channels <= 0:
            raise ValidationError(f"channels must be > 0, got {channels}")
        if source_rate <= 0 or target_rate <= 0:
            raise ValidationError(
                f"Sample rates must be > 0 (source={source_rate}, target={target_rate})"
            )
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        if len(data) % channels != 0:
            raise ValidationError(f"sample count {len(data)} is not a multiple of {channels} channels")
        result = self.resample(data.reshape(-1, channels), source_rate, target_rate, cancel, tracker)
        return result.reshape(-1)
