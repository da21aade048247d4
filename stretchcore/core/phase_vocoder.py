"""
Phase vocoder time-stretch.

Every chunk is transformed independently, its per-bin phase is re-advanced
by the stretch factor, and it is transformed back. Two flavours exist:
CHUNKED feeds rectangular chunks to the FFT and re-advances each chunk from
the previous adjusted phase; STFT applies a Hann analysis window and carries
a running synthesis phase across all chunks. The duration change itself
happens later, when the overlap-add aggregator spaces the chunks by the
stretched hop.
"""
from __future__ import annotations
import math
from typing import Optional
import numpy as np
import scipy.fft

from ..utils.logger import logger
from .chunker import ChunkSet
from .config import PhaseVocoderMode
from .errors import ComputationError, ValidationError
from .overlap_add import hann_window, stretched_hop_size
from .parallel import CancelSignal, ProgressTracker, check_cancelled, run_parallel
from .types import ChunkArray, FrameArray, SpectralBackend, SpectrumArray


TWO_PI = 2.0 * np.pi


class ScipyFFTBackend:
    """Default CPU backend built on scipy.fft."""

    def forward(self, frames: FrameArray) -> np.ndarray:
        return scipy.fft.fft(frames.astype(np.float64), axis=0)

    def inverse(self, spectra: np.ndarray) -> FrameArray:
        return scipy.fft.ifft(spectra, axis=0).real.astype(np.float32)


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def wrap_phase(phase: np.ndarray) -> np.ndarray:
    """Wrap angles into [-pi, pi)."""
    return np.mod(phase + np.pi, TWO_PI) - np.pi


def expected_phase_advance(chunk_size: int, hop_in: int, sample_rate: int) -> np.ndarray:
    """Per-bin phase advance of a bin-centred sinusoid over ``hop_in`` frames."""
    freq_per_bin = sample_rate / chunk_size
    bins = np.arange(chunk_size, dtype=np.float64)
    return TWO_PI * freq_per_bin * bins * hop_in / sample_rate


def adjust_phases(
    spectra: SpectrumArray,
    factor: float,
    hop_in: int,
    sample_rate: int,
    cancel: CancelSignal = None,
    tracker: Optional[ProgressTracker] = None,
) -> SpectrumArray:
    """
    Re-advance the phase of every bin by ``factor``; magnitudes are kept.

    Chunk 0 passes through. For chunk c > 0 each bin gets
    ``prev_adjusted + expected + wrap(delta - expected) * factor`` where
    ``delta`` is the raw phase difference to chunk c - 1. Bins with zero
    magnitude get phase 0.

    Args:
        spectra: Forward transforms, shape (chunks, chunk_size, channels)
        factor: Stretch factor
        hop_in: Analysis hop in frames
        sample_rate: Sample rate in Hz

    Returns:
        Adjusted spectra, same shape
    """
    count, chunk_size = spectra.shape[0], spectra.shape[1]
    output = np.empty_like(spectra)
    if count == 0:
        return output

    expected = expected_phase_advance(chunk_size, hop_in, sample_rate)
    expected = expected.reshape((chunk_size,) + (1,) * (spectra.ndim - 2))

    output[0] = spectra[0]
    prev_phase = np.angle(spectra[0])
    prev_adjusted = prev_phase
    if tracker is not None:
        tracker.report_work(1)

    # Chunk-sequential: each chunk depends on the previous adjusted phase.
    for c in range(1, count):
        check_cancelled(cancel)
        current = spectra[c]
        magnitude = np.abs(current)
        phase = np.angle(current)

        wrapped = wrap_phase(phase - prev_phase - expected)
        adjusted = wrap_phase(prev_adjusted + expected + wrapped * factor)
        adjusted = np.where(magnitude > 0.0, adjusted, 0.0)

        output[c] = magnitude * np.exp(1j * adjusted)
        prev_phase = phase
        prev_adjusted = adjusted
        if tracker is not None:
            tracker.report_work(1)

    return output


def accumulate_phases(
    spectra: SpectrumArray,
    ratio: float,
    hop_in: int,
    sample_rate: int,
    cancel: CancelSignal = None,
    tracker: Optional[ProgressTracker] = None,
) -> SpectrumArray:
    """
    Classic STFT phase propagation; magnitudes are kept.

    The running synthesis phase starts at zero and, for every chunk (the
    first included), advances by the bin's true phase increment scaled by
    ``ratio`` (synthesis hop / analysis hop). The true increment is
    ``expected + wrap(phase - prev_phase - expected)`` with ``prev_phase``
    starting at zero.
    """
    count, chunk_size = spectra.shape[0], spectra.shape[1]
    output = np.empty_like(spectra)
    if count == 0:
        return output

    expected = expected_phase_advance(chunk_size, hop_in, sample_rate)
    expected = expected.reshape((chunk_size,) + (1,) * (spectra.ndim - 2))

    prev_phase = np.zeros(spectra.shape[1:], dtype=np.float64)
    phase_sum = np.zeros(spectra.shape[1:], dtype=np.float64)

    for c in range(count):
        check_cancelled(cancel)
        current = spectra[c]
        phase = np.angle(current)

        true_advance = expected + wrap_phase(phase - prev_phase - expected)
        phase_sum = wrap_phase(phase_sum + true_advance * ratio)

        output[c] = np.abs(current) * np.exp(1j * phase_sum)
        prev_phase = phase
        if tracker is not None:
            tracker.report_work(1)

    return output


class SpectralStretchEngine:
    """
    Forward FFT -> phase adjust -> inverse FFT over a ChunkSet.

    The FFT kernels come from a :class:`SpectralBackend`; an accelerator can
    be plugged in as long as it honours the same shapes.
    """

    def __init__(self, workers: int = 1, backend: Optional[SpectralBackend] = None):
        self.workers = max(1, int(workers))
        self.backend: SpectralBackend = backend or ScipyFFTBackend()

    def stretch(
        self,
        chunk_set: ChunkSet,
        factor: float,
        sample_rate: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
        mode: PhaseVocoderMode = PhaseVocoderMode.CHUNKED,
    ) -> ChunkArray:
        """
        Phase-adjust every chunk of ``chunk_set``.

        In STFT mode the returned chunks carry the analysis window, and the
        aggregator windows them a second time. Its weight sum only undoes
        the synthesis window, so the level drops by the mean window gain
        until peak normalisation restores it.

        Returns:
            Time-domain chunks, shape (count, chunk_size, channels). An empty
            ChunkSet is returned unchanged.
        """
        chunks = chunk_set.chunks
        count = len(chunk_set)
        if count == 0:
            logger.debug("Phase vocoder received no chunks, returning input")
            return chunks

        chunk_size = chunk_set.chunk_size
        if not is_power_of_two(chunk_size):
            raise ValidationError(f"chunk_size must be a power of two, got {chunk_size}")
        if not (factor > 0 and math.isfinite(factor)):
            raise ValidationError(f"factor must be a finite value > 0, got {factor}")
        if sample_rate <= 0:
            raise ValidationError(f"sample_rate must be > 0, got {sample_rate}")

        hop_in = chunk_size - chunk_set.overlap_size
        spectra = np.empty(chunks.shape, dtype=np.complex128)
        if mode is PhaseVocoderMode.STFT:
            analysis = hann_window(chunk_size).astype(np.float32)[:, np.newaxis]
        else:
            analysis = None

        def forward(index: int) -> None:
            chunk = chunks[index] if analysis is None else chunks[index] * analysis
            spectra[index] = self.backend.forward(chunk)

        run_parallel(forward, range(count), self.workers, cancel, tracker)
        if not np.all(np.isfinite(spectra)):
            raise ComputationError("Forward FFT produced non-finite values")

        if mode is PhaseVocoderMode.STFT:
            hop_out = stretched_hop_size(chunk_size, chunk_set.overlap_size, factor)
            adjusted = accumulate_phases(spectra, hop_out / hop_in, hop_in, sample_rate, cancel, tracker)
        else:
            adjusted = adjust_phases(spectra, factor, hop_in, sample_rate, cancel, tracker)

        output = np.empty(chunks.shape, dtype=np.float32)

        def inverse(index: int) -> None:
            output[index] = self.backend.inverse(adjusted[index])

        run_parallel(inverse, range(count), self.workers, cancel, tracker)

        logger.debug(
            "Phase vocoder (%s) processed %d chunks (size=%d, hop_in=%d, factor=%.4f)",
            mode.name, count, chunk_size, hop_in, factor,
        )
        return output
