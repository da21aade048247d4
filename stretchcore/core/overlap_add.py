"""
Overlap-add reconstruction of phase-vocoder chunks.

Chunks are Hann-windowed, placed ``stretched_hop`` frames apart and divided by
the summed window weight. Unity gain is exact only near 50% overlap; other
ratios leave an amplitude ripple, which is kept as-is.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import numpy as np
from scipy.signal import windows

from ..utils.logger import logger
from .config import AGGREGATE_CONFIG
from .parallel import (
    CancelSignal, ProgressTracker, block_ranges, check_cancelled, run_parallel, split_evenly,
)
from .types import ChunkArray, FrameArray


def stretched_hop_size(chunk_size: int, overlap_size: int, factor: float) -> int:
    return int(round((chunk_size - overlap_size) * factor))


def hann_window(length: int) -> np.ndarray:
    """Symmetric Hann window: 0.5 * (1 - cos(2*pi*i / (N - 1)))."""
    if length == 1:
        return np.ones(1)
    return windows.hann(length, sym=True)


@dataclass
class StretchSession:
    """Accumulators for one aggregate call."""
    output_accumulator: np.ndarray  # (length, channels) float64
    weight_sum: np.ndarray          # (length,) float64
    stretched_hop: int
    chunk_size: int

    @classmethod
    def allocate(cls, chunk_count: int, chunk_size: int, stretched_hop: int, channels: int):
        length = max(0, (chunk_count - 1) * stretched_hop + chunk_size)
        return cls(
            output_accumulator=np.zeros((length, channels), dtype=np.float64),
            weight_sum=np.zeros(length, dtype=np.float64),
            stretched_hop=stretched_hop,
            chunk_size=chunk_size,
        )

    @property
    def length(self) -> int:
        return self.weight_sum.shape[0]


class OverlapAddAggregator:
    """
    Rebuilds a continuous waveform from stretched chunks.

    Each worker accumulates a contiguous run of chunks into private arrays;
    the partial sums are then added into the session in worker order. The
    result does not depend on scheduling.
    """

    def __init__(self, workers: int = 1, weight_epsilon: float = AGGREGATE_CONFIG.weight_epsilon):
        self.workers = max(1, int(workers))
        self.weight_epsilon = weight_epsilon

    def accumulate(
        self,
        chunks: ChunkArray,
        factor: float,
        chunk_size: int,
        overlap_size: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> StretchSession:
        count = chunks.shape[0]
        channels = chunks.shape[2]
        hop = stretched_hop_size(chunk_size, overlap_size, factor)
        session = StretchSession.allocate(count, chunk_size, hop, channels)
        length = session.length
        window = hann_window(chunk_size)
        weighted_window = window[:, np.newaxis]

        def partial(span: tuple[int, int]):
            first, last = span
            base = first * hop
            end = min(length, (last - 1) * hop + chunk_size)
            acc = np.zeros((end - base, channels), dtype=np.float64)
            weights = np.zeros(end - base, dtype=np.float64)
            for index in range(first, last):
                check_cancelled(cancel)
                offset = index * hop
                n = max(0, min(chunk_size, chunks.shape[1], length - offset))
                local = offset - base
                acc[local:local + n] += chunks[index, :n] * weighted_window[:n]
                weights[local:local + n] += window[:n]
                if tracker is not None:
                    tracker.report_work(1)
            return base, acc, weights

        partials = run_parallel(partial, split_evenly(count, self.workers), self.workers, cancel)

        for base, acc, weights in partials:
            end = base + weights.shape[0]
            session.output_accumulator[base:end] += acc
            session.weight_sum[base:end] += weights
        return session

    def normalize(self, session: StretchSession, cancel: CancelSignal = None) -> FrameArray:
        """out = acc / weight where weight > epsilon, else 0."""
        output = np.zeros(session.output_accumulator.shape, dtype=np.float32)
        eps = self.weight_epsilon

        def normalize_block(span: tuple[int, int]) -> None:
            start, end = span
            weights = session.weight_sum[start:end]
            valid = weights > eps
            safe = np.where(valid, weights, 1.0)[:, np.newaxis]
            block = session.output_accumulator[start:end] / safe
            output[start:end] = np.where(valid[:, np.newaxis], block, 0.0)

        run_parallel(
            normalize_block,
            block_ranges(session.length, AGGREGATE_CONFIG.normalize_block),
            self.workers,
            cancel,
        )
        return output

    def aggregate(
        self,
        chunks: ChunkArray,
        factor: float,
        chunk_size: int,
        overlap_size: int,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> FrameArray:
        """
        Overlap-add ``chunks`` spaced by the stretched hop.

        Args:
            chunks: Stretched time-domain chunks, shape (count, chunk_size, channels)
            factor: Stretch factor
            chunk_size: Original chunk size in frames
            overlap_size: Original overlap in frames

        Returns:
            (frames, channels) float32 output of length
            ``(count - 1) * stretched_hop + chunk_size``
        """
        if chunks.shape[0] == 0:
            return np.zeros((0, chunks.shape[2]), dtype=np.float32)
        session = self.accumulate(chunks, factor, chunk_size, overlap_size, cancel, tracker)
        output = self.normalize(session, cancel)
        logger.debug(
            "Aggregated %d chunks into %d frames (stretched_hop=%d)",
            chunks.shape[0], session.length, session.stretched_hop,
        )
        return output
