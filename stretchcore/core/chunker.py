"""
Splits a sample buffer into overlapping, fixed-size frames.
The tail chunk is zero-padded, never dropped.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional, Union
import numpy as np

from ..utils.logger import logger
from .buffer import SampleBuffer
from .parallel import CancelSignal, ProgressTracker, run_parallel
from .types import ChunkArray, FrameArray


@dataclass
class ChunkSet:
    """Ordered chunks, shape (count, chunk_size, channels)."""
    chunks: ChunkArray
    chunk_size: int
    overlap_size: int
    step: int
    total_frames: int

    def __len__(self) -> int:
        return self.chunks.shape[0]

    @property
    def channels(self) -> int:
        return self.chunks.shape[2]

    @classmethod
    def empty(cls, chunk_size: int = 0, channels: int = 1) -> "ChunkSet":
        return cls(
            chunks=np.zeros((0, max(0, chunk_size), channels), dtype=np.float32),
            chunk_size=max(0, chunk_size),
            overlap_size=0,
            step=1,
            total_frames=0,
        )


def chunk_geometry(total_frames: int, chunk_size: int, overlap: float) -> tuple[int, int, int]:
    """
    Compute (overlap_size, step, count) for a buffer of ``total_frames``.

    step = max(1, chunk_size - int(chunk_size * overlap))
    count = max(1, ceil((total_frames - chunk_size) / step) + 1)
    """
    overlap_size = int(chunk_size * overlap)
    step = max(1, chunk_size - overlap_size)
    count = max(1, math.ceil((total_frames - chunk_size) / step) + 1)
    return overlap_size, step, count


class Chunker:
    """Extracts overlapping chunks on the worker pool."""

    def __init__(self, workers: int = 1):
        self.workers = max(1, int(workers))

    def split(
        self,
        source: Union[SampleBuffer, FrameArray],
        chunk_size: int,
        overlap: float,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> ChunkSet:
        """
        Split ``source`` into chunks of ``chunk_size`` frames.

        Invalid parameters or an empty source give an empty ChunkSet.
        """
        frames = source.as_frames() if isinstance(source, SampleBuffer) else np.asarray(source)
        if frames.ndim == 1:
            frames = frames[:, np.newaxis]
        channels = frames.shape[1]

        if chunk_size <= 0 or not (0.0 <= overlap < 1.0) or frames.shape[0] == 0:
            logger.debug(
                "Chunking skipped (chunk_size=%s, overlap=%s, frames=%d)",
                chunk_size, overlap, frames.shape[0],
            )
            return ChunkSet.empty(chunk_size, channels)

        total = frames.shape[0]
        overlap_size, step, count = chunk_geometry(total, chunk_size, overlap)
        chunks = np.zeros((count, chunk_size, channels), dtype=np.float32)

        def extract(index: int) -> None:
            start = index * step
            n = max(0, min(chunk_size, total - start))
            # Each unit writes a disjoint slice; the rest stays zero.
            chunks[index, :n] = frames[start:start + n]

        run_parallel(extract, range(count), self.workers, cancel, tracker)

        logger.debug(
            "Chunked %d frames into %d chunks (size=%d, step=%d)",
            total, count, chunk_size, step,
        )
        return ChunkSet(chunks, chunk_size, overlap_size, step, total)


def split_into_chunks(
    source: Union[SampleBuffer, FrameArray],
    chunk_size: int,
    overlap: float = 0.5,
    workers: int = 1,
    cancel: CancelSignal = None,
) -> ChunkSet:
    """Convenience wrapper around :meth:`Chunker.split`."""
    return Chunker(workers).split(source, chunk_size, overlap, cancel)
