"""
Peak normalization: parallel peak search, then linear gain.
"""
from __future__ import annotations
from typing import Optional
import numpy as np

from ..utils.logger import logger
from .config import NORMALIZE_CONFIG
from .parallel import CancelSignal, ProgressTracker, block_ranges, run_parallel


class Normalizer:
    """Scales audio so its absolute peak equals ``amplitude``."""

    def __init__(self, workers: int = 1, block_size: int = NORMALIZE_CONFIG.block_size):
        self.workers = max(1, int(workers))
        self.block_size = block_size

    def peak(self, data: np.ndarray, cancel: CancelSignal = None) -> float:
        """Absolute maximum, computed per block and reduced."""
        flat = data.reshape(-1)
        if flat.size == 0:
            return 0.0
        spans = block_ranges(flat.size, self.block_size)
        maxima = run_parallel(
            lambda span: float(np.max(np.abs(flat[span[0]:span[1]]))),
            spans,
            self.workers,
            cancel,
        )
        return max(maxima)

    def normalize(
        self,
        data: np.ndarray,
        amplitude: float = NORMALIZE_CONFIG.default_amplitude,
        threshold: float = 0.0,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> np.ndarray:
        """
        Normalize audio to a target peak level.

        Args:
            data: Audio samples (any shape)
            amplitude: Target peak amplitude
            threshold: Peaks at or below this are left untouched

        Returns:
            New float32 array; the input itself when no gain was applied
        """
        peak = self.peak(data, cancel)
        if peak <= threshold or peak <= 0.0:
            logger.debug("Normalize skipped (peak=%.3g)", peak)
            if tracker is not None:
                tracker.report_work(1)
            return data

        gain = np.float32(amplitude / peak)
        flat = data.reshape(-1)
        output = np.empty(flat.shape, dtype=np.float32)

        def scale(span: tuple[int, int]) -> None:
            start, end = span
            np.multiply(flat[start:end], gain, out=output[start:end], casting="unsafe")

        run_parallel(scale, block_ranges(flat.size, self.block_size), self.workers, cancel)
        if tracker is not None:
            tracker.report_work(1)
        logger.debug("Normalized peak %.4f -> %.4f", peak, amplitude)
        return output.reshape(data.shape)
