"""
Worker-pool data parallelism, cooperative cancellation and progress tracking.

Each call to :func:`run_parallel` is a barrier: it returns only after every
unit finished (or the first failure was raised). numpy and scipy release the
GIL inside their kernels, so a thread pool gives real parallelism here.
"""
from __future__ import annotations
import os
import threading
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from typing import Callable, Iterable, Optional, Sequence, TypeVar, Union

from ..utils.logger import logger
from .errors import CancellationError, ComputationError, StretchError
from .types import ProgressCallback, StepCallback


T = TypeVar("T")
R = TypeVar("R")


def resolve_workers(max_workers: Optional[int] = None) -> int:
    """Worker count: all cores by default, otherwise clamped to [1, cores]."""
    cores = os.cpu_count() or 1
    if max_workers is None or max_workers <= 0:
        return cores
    return max(1, min(int(max_workers), cores))


class CancellationToken:
    """Cooperative cancellation flag shared between caller and workers."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Operation was cancelled")


CancelSignal = Union[CancellationToken, threading.Event, None]


def check_cancelled(cancel: CancelSignal) -> None:
    """Raise CancellationError if the token (or plain Event) is set."""
    if cancel is None:
        return
    if isinstance(cancel, CancellationToken):
        cancel.raise_if_cancelled()
    elif cancel.is_set():
        raise CancellationError("Operation was cancelled")


class ProgressTracker:
    """
    Thread-safe progress over a fixed amount of work.

    Reported fractions never decrease; :meth:`complete` always reports 1.0.
    """

    def __init__(
        self,
        total_work: float,
        progress: Optional[ProgressCallback] = None,
        on_step: Optional[StepCallback] = None,
    ):
        self._lock = threading.Lock()
        self._total = max(1.0, float(total_work))
        self._done = 0.0
        self._last = 0.0
        self._progress = progress
        self._on_step = on_step

    @property
    def fraction(self) -> float:
        return self._last

    def report_work(self, units: float = 1.0) -> None:
        if units <= 0:
            return
        with self._lock:
            self._done = min(self._total, self._done + units)
            fraction = max(self._last, min(1.0, self._done / self._total))
            self._last = fraction
            # Callbacks run under the lock so observers see a monotonic sequence.
            if self._progress is not None:
                self._progress(fraction)
            if self._on_step is not None:
                self._on_step(int(round(self._done)), int(round(self._total)))

    def report_fraction(self, fraction: float) -> None:
        """Advance to an absolute fraction (ignored if it would go backwards)."""
        with self._lock:
            delta = min(1.0, max(0.0, fraction)) * self._total - self._done
        self.report_work(delta)

    def complete(self) -> None:
        with self._lock:
            self._done = self._total
            self._last = 1.0
            if self._progress is not None:
                self._progress(1.0)
            if self._on_step is not None:
                self._on_step(int(round(self._total)), int(round(self._total)))


def run_parallel(
    func: Callable[[T], R],
    items: Iterable[T],
    workers: int = 1,
    cancel: CancelSignal = None,
    tracker: Optional[ProgressTracker] = None,
) -> list[R]:
    """
    Apply ``func`` to every item on a fixed-size thread pool.

    Cancellation is checked at the top of every unit; each finished unit
    reports one unit of work to ``tracker``. Results keep input order.

    Raises:
        CancellationError: the token fired before or during the stage
        ComputationError: ``func`` raised something other than a StretchError
    """
    work: Sequence[T] = items if isinstance(items, Sequence) else list(items)

    def unit(item: T) -> R:
        check_cancelled(cancel)
        result = func(item)
        if tracker is not None:
            tracker.report_work(1)
        return result

    check_cancelled(cancel)
    try:
        if workers <= 1 or len(work) <= 1:
            return [unit(item) for item in work]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(unit, item) for item in work]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()
            return [future.result() for future in futures]
    except StretchError:
        raise
    except Exception as e:
        logger.error("Parallel stage failed: %s", e, exc_info=True)
        raise ComputationError(str(e)) from e


def block_ranges(length: int, block: int) -> list[tuple[int, int]]:
    """Split ``range(length)`` into contiguous ``(start, end)`` blocks."""
    block = max(1, int(block))
    return [(start, min(length, start + block)) for start in range(0, length, block)]


def split_evenly(length: int, parts: int) -> list[tuple[int, int]]:
    """Split ``range(length)`` into at most ``parts`` contiguous, non-empty ranges."""
    parts = max(1, min(int(parts), length)) if length > 0 else 0
    bounds = [length * i // parts for i in range(parts + 1)] if parts else []
    return [(bounds[i], bounds[i + 1]) for i in range(parts)]
