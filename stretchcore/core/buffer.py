"""
SampleBuffer: the engine's boundary value.
Holds channel-interleaved float32 samples plus rate/channel/tempo metadata.
"""
from __future__ import annotations
import threading
from typing import Any, Mapping, Optional
import numpy as np

from .errors import ValidationError
from .types import FrameArray, InterleavedArray


def _validate_layout(samples: np.ndarray, sample_rate: int, channels: int) -> None:
    if sample_rate <= 0:
        raise ValidationError(f"sample_rate must be > 0, got {sample_rate}")
    if channels < 1:
        raise ValidationError(f"channels must be >= 1, got {channels}")
    if samples.ndim != 1:
        raise ValidationError(f"samples must be 1-D interleaved, got shape {samples.shape}")
    if len(samples) % channels != 0:
        raise ValidationError(
            f"sample count {len(samples)} is not a multiple of {channels} channels"
        )


class SampleBuffer:
    """
    Represents an interleaved PCM buffer with its format and tempo metadata.

    Stages never mutate ``samples`` in place; they build a new array and hand
    it to :meth:`replace`, which swaps data and metadata in one step.
    """

    def __init__(
        self,
        samples,
        sample_rate: int,
        channels: int = 1,
        stretch_factor: Optional[float] = None,
        bpm: Optional[float] = None,
    ):
        data = np.ascontiguousarray(samples, dtype=np.float32).reshape(-1)
        _validate_layout(data, sample_rate, channels)
        self._lock = threading.Lock()
        self._samples = data
        self._sample_rate = int(sample_rate)
        self._channels = int(channels)
        self.stretch_factor = stretch_factor
        self.bpm = bpm

    # --- Construction ---

    @classmethod
    def from_frames(
        cls,
        frames: np.ndarray,
        sample_rate: int,
        stretch_factor: Optional[float] = None,
        bpm: Optional[float] = None,
    ) -> "SampleBuffer":
        """Build a buffer from a (frames,) or (frames, channels) array."""
        arr = np.asarray(frames, dtype=np.float32)
        if arr.ndim == 1:
            channels = 1
        elif arr.ndim == 2:
            channels = arr.shape[1]
        else:
            raise ValidationError(f"Expected 1-D or 2-D frames, got shape {arr.shape}")
        return cls(arr.reshape(-1), sample_rate, channels, stretch_factor, bpm)

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> "SampleBuffer":
        """Build from ``{samples, sampleRate, channels, stretchFactor?, bpm?}``."""
        try:
            samples = value["samples"]
            sample_rate = int(value["sampleRate"])
            channels = int(value["channels"])
        except KeyError as e:
            raise ValidationError(f"Missing buffer field: {e.args[0]}") from e
        return cls(
            samples,
            sample_rate,
            channels,
            stretch_factor=value.get("stretchFactor"),
            bpm=value.get("bpm"),
        )

    def to_mapping(self) -> dict[str, Any]:
        """Inverse of :meth:`from_mapping`; optional keys only when set."""
        with self._lock:
            result: dict[str, Any] = {
                "samples": self._samples,
                "sampleRate": self._sample_rate,
                "channels": self._channels,
            }
            if self.stretch_factor is not None:
                result["stretchFactor"] = self.stretch_factor
            if self.bpm is not None:
                result["bpm"] = self.bpm
        return result

    # --- Accessors ---

    @property
    def samples(self) -> InterleavedArray:
        return self._samples

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def frames(self) -> int:
        """Number of frames (samples per channel)."""
        return len(self._samples) // self._channels

    @property
    def duration_seconds(self) -> float:
        return self.frames / self._sample_rate

    @property
    def is_empty(self) -> bool:
        return len(self._samples) == 0

    def as_frames(self) -> FrameArray:
        """Read-only (frames, channels) view of the samples."""
        view = self._samples.reshape(-1, self._channels)
        view.flags.writeable = False
        return view

    def copy(self) -> "SampleBuffer":
        with self._lock:
            return SampleBuffer(
                self._samples.copy(),
                self._sample_rate,
                self._channels,
                self.stretch_factor,
                self.bpm,
            )

    # --- Atomic swap ---

    def replace(
        self,
        samples,
        *,
        sample_rate: Optional[int] = None,
        stretch_factor: Optional[float] = None,
        bpm: Optional[float] = None,
    ) -> "SampleBuffer":
        """
        Swap in a fully computed result.

        Args:
            samples: New interleaved samples (or (frames, channels) array)
            sample_rate: New rate, unchanged if None
            stretch_factor: New stretch factor, unchanged if None
            bpm: New tempo, unchanged if None

        Returns:
            self (fluent API)
        """
        data = np.ascontiguousarray(samples, dtype=np.float32).reshape(-1)
        rate = self._sample_rate if sample_rate is None else int(sample_rate)
        _validate_layout(data, rate, self._channels)
        with self._lock:
            self._samples = data
            self._sample_rate = rate
            if stretch_factor is not None:
                self.stretch_factor = stretch_factor
            if bpm is not None:
                self.bpm = bpm
        return self

    def __repr__(self) -> str:
        return (
            f"SampleBuffer(frames={self.frames}, sample_rate={self._sample_rate}, "
            f"channels={self._channels}, stretch_factor={self.stretch_factor}, bpm={self.bpm})"
        )
