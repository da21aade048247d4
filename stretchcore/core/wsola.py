"""
WSOLA (Waveform Similarity Overlap-Add) time-stretch.

Time-domain stretcher, transient-friendly. Blocks are taken from the input at
a hop of ``hop_a`` and placed in the output at a hop of ``hop_s``; each block
is shifted within a search radius to the position whose start best matches
(normalized cross-correlation) what is already written in the output.

The match is scored on one or two correlation signals, chosen by
:class:`CorrelationMode`: the mono downmix, L and R separately, or mid plus a
weighted side. Stereo modes only apply to two-channel input.

Block placement is inherently sequential: every search reads the output
written by the previous block.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..utils.logger import logger
from .config import WSOLA_CONFIG, WSOLA_PRESETS, CorrelationMode, WsolaPreset
from .errors import ValidationError
from .parallel import CancelSignal, ProgressTracker, check_cancelled
from .types import FrameArray


def _clamp(value, low, high):
    return max(low, min(high, value))


@dataclass(frozen=True)
class WsolaParams:
    """
    Caller-facing WSOLA parameters (frames).

    ``search_radius=None`` derives the radius from the frame size.
    ``side_weight`` only matters for MID_SIDE; ``correlation_stride``
    subsamples the correlation sums (1 = every frame).
    """
    frame_size: int = WSOLA_CONFIG.frame_size
    overlap: int = WSOLA_CONFIG.overlap
    search_radius: Optional[int] = None
    search_step: int = WSOLA_CONFIG.search_step
    normalize: bool = False
    correlation_mode: CorrelationMode = CorrelationMode.MONO
    side_weight: float = WSOLA_CONFIG.side_weight
    correlation_stride: int = WSOLA_CONFIG.correlation_stride

    @classmethod
    def from_preset(cls, preset: WsolaPreset, normalize: bool = False) -> "WsolaParams":
        cfg = WSOLA_PRESETS[preset]
        overlap = int(round(cfg.frame_size * cfg.overlap_ratio))
        hop_a = cfg.frame_size - overlap
        radius = _clamp(int(round(hop_a * cfg.radius_multiplier)), 64, cfg.frame_size)
        return cls(
            frame_size=cfg.frame_size,
            overlap=overlap,
            search_radius=radius,
            search_step=cfg.search_step,
            normalize=normalize,
            correlation_mode=cfg.correlation_mode,
            side_weight=cfg.side_weight,
            correlation_stride=cfg.correlation_stride,
        )


@dataclass(frozen=True)
class WsolaPlan:
    """Derived, clamped geometry and correlation settings for one WSOLA run."""
    factor: float
    frame_size: int
    overlap: int
    hop_a: int
    hop_s: int
    actual_overlap: int
    search_radius: int
    search_step: int
    correlation_mode: CorrelationMode = CorrelationMode.MONO
    side_weight: float = 0.0
    correlation_stride: int = 1

    @classmethod
    def build(cls, factor: float, params: WsolaParams) -> "WsolaPlan":
        cfg = WSOLA_CONFIG
        clamped_factor = _clamp(factor, cfg.min_factor, cfg.max_factor)
        if clamped_factor != factor:
            logger.debug("WSOLA factor %.4f clamped to %.4f", factor, clamped_factor)

        frame_size = _clamp(int(params.frame_size), cfg.min_frame_size, cfg.max_frame_size)
        overlap = _clamp(int(params.overlap), cfg.min_overlap, frame_size - cfg.overlap_margin)

        hop_a = frame_size - overlap
        hop_s = max(1, int(round(hop_a * clamped_factor)))

        # Crossfade and correlation must use the overlap the OUTPUT really has.
        actual_overlap = _clamp(frame_size - hop_s, cfg.min_overlap, frame_size - cfg.overlap_margin)

        if params.search_radius is None:
            search_radius = _clamp(
                frame_size // 2,
                cfg.min_search_radius,
                min(cfg.max_search_radius, frame_size - cfg.overlap_margin),
            )
        else:
            search_radius = max(0, int(params.search_radius))
        search_step = max(1, int(params.search_step))
        correlation_stride = _clamp(int(params.correlation_stride), 1, cfg.max_correlation_stride)
        side_weight = _clamp(float(params.side_weight), 0.0, cfg.max_side_weight)

        return cls(
            factor=clamped_factor,
            frame_size=frame_size,
            overlap=overlap,
            hop_a=hop_a,
            hop_s=hop_s,
            actual_overlap=actual_overlap,
            search_radius=search_radius,
            search_step=search_step,
            correlation_mode=params.correlation_mode,
            side_weight=side_weight,
            correlation_stride=correlation_stride,
        )


@dataclass
class WsolaResult:
    """Output frames plus the block placements that produced them."""
    frames: FrameArray
    plan: WsolaPlan
    provisional_frames: int
    placements: list[tuple[int, int]] = field(default_factory=list)  # (out_pos, in_pos)
    changed: bool = True
    correlation_mode: CorrelationMode = CorrelationMode.MONO  # Mode actually used


def equal_power_ramps(length: int) -> tuple[np.ndarray, np.ndarray]:
    """Fade-in (sin) and fade-out (cos) over t = (i + 0.5) / length."""
    t = (np.arange(length, dtype=np.float64) + 0.5) / length
    angle = t * (np.pi * 0.5)
    return np.sin(angle).astype(np.float32), np.cos(angle).astype(np.float32)


def mono_downmix(frames: FrameArray) -> np.ndarray:
    if frames.shape[1] == 1:
        return frames[:, 0].astype(np.float64)
    return frames.mean(axis=1, dtype=np.float64)


def effective_correlation_mode(mode: CorrelationMode, channels: int) -> CorrelationMode:
    """Stereo modes need exactly two channels; anything else correlates mono."""
    return mode if channels == 2 else CorrelationMode.MONO


def correlation_signals(frames: FrameArray, mode: CorrelationMode) -> list[np.ndarray]:
    """The float64 signal(s) scored for ``mode``: [mono], [L, R] or [mid, side]."""
    if mode is CorrelationMode.MONO or frames.shape[1] != 2:
        return [mono_downmix(frames)]
    left = frames[:, 0].astype(np.float64)
    right = frames[:, 1].astype(np.float64)
    if mode is CorrelationMode.STEREO:
        return [left, right]
    return [0.5 * (left + right), 0.5 * (left - right)]


def correlation_weights(mode: CorrelationMode, side_weight: float) -> tuple[float, ...]:
    if mode is CorrelationMode.MONO:
        return (1.0,)
    if mode is CorrelationMode.STEREO:
        return (1.0, 1.0)
    return (1.0, side_weight)


@dataclass(frozen=True)
class CorrelationTrack:
    """One input correlation signal with its running energy, and its score weight."""
    signal: np.ndarray
    energy_prefix: np.ndarray
    weight: float = 1.0

    @classmethod
    def build(cls, signal: np.ndarray, weight: float = 1.0) -> "CorrelationTrack":
        signal = np.asarray(signal, dtype=np.float64)
        prefix = np.concatenate(([0.0], np.cumsum(signal * signal)))
        return cls(signal, prefix, weight)

    def scores(
        self,
        reference: np.ndarray,
        start: int,
        end: int,
        step: int,
        stride: int = 1,
        eps: float = WSOLA_CONFIG.correlation_epsilon,
    ) -> np.ndarray:
        """
        Normalized cross-correlation of ``reference`` against every candidate
        in ``range(start, end + 1, step)``. With ``stride > 1`` only every
        ``stride``-th frame of the overlap enters the dot and energy sums.
        """
        overlap = reference.shape[0]
        windows = sliding_window_view(self.signal, overlap)[start:end + 1:step]
        if stride == 1:
            candidates = np.arange(start, end + 1, step)
            numerator = windows @ reference
            in_energy = self.energy_prefix[candidates + overlap] - self.energy_prefix[candidates]
            out_energy = float(np.dot(reference, reference))
        else:
            sampled = windows[:, ::stride]
            ref = reference[::stride]
            numerator = sampled @ ref
            in_energy = np.einsum("ij,ij->i", sampled, sampled)
            out_energy = float(np.dot(ref, ref))
        return numerator / np.sqrt((out_energy + eps) * (in_energy + eps))


def find_best_match(
    tracks: Sequence[CorrelationTrack],
    references: Sequence[np.ndarray],
    predicted: int,
    search_radius: int,
    search_step: int,
    frame_size: int,
    stride: int = 1,
    eps: float = WSOLA_CONFIG.correlation_epsilon,
) -> int:
    """
    Best input position for the next block.

    Scans ``[predicted - radius, predicted + radius]`` (clamped to the input)
    in steps of ``search_step`` and returns the first position with the
    highest weighted sum of per-track correlation scores. ``references``
    pairs with ``tracks`` one to one.
    """
    in_frames = tracks[0].signal.shape[0]
    start = max(0, predicted - search_radius)
    end = min(in_frames - frame_size - 1, predicted + search_radius)
    if end < start:
        return predicted

    candidates = np.arange(start, end + 1, search_step)
    total = np.zeros(candidates.shape[0], dtype=np.float64)
    for track, reference in zip(tracks, references):
        total += track.weight * track.scores(reference, start, end, search_step, stride, eps)

    # argmax returns the first maximum: scan-order tie-break.
    return int(candidates[int(np.argmax(total))])


def overlap_add_frame(
    source: FrameArray,
    in_pos: int,
    output: FrameArray,
    out_pos: int,
    frame_size: int,
    overlap: int,
    fade_in: np.ndarray,
    fade_out: np.ndarray,
) -> None:
    """Crossfade the first ``overlap`` frames, overwrite the rest."""
    head_out = output[out_pos:out_pos + overlap]
    head_in = source[in_pos:in_pos + overlap]
    head_out[:] = head_out * fade_out[:, np.newaxis] + head_in * fade_in[:, np.newaxis]
    output[out_pos + overlap:out_pos + frame_size] = source[in_pos + overlap:in_pos + frame_size]


class WsolaEngine:
    """
    Sequential WSOLA over all channels. Every channel gets the same block
    placement, chosen by the plan's correlation mode.

    With ``hop_s`` larger than ``frame_size`` (factors above about 2 with the
    default geometry) consecutive output blocks no longer touch. The frames
    between them are never written and stay silent; the crossfade head of
    each block then fades in from zeros.
    """

    def __init__(self, params: Optional[WsolaParams] = None):
        self.params = params or WsolaParams()

    def stretch(
        self,
        frames: FrameArray,
        factor: float,
        cancel: CancelSignal = None,
        tracker: Optional[ProgressTracker] = None,
    ) -> WsolaResult:
        """
        Stretch (frames, channels) audio by ``factor``.

        Returns:
            WsolaResult; inputs no longer than one frame (+2) come back unchanged
            with ``changed=False``.
        """
        if not (factor > 0 and math.isfinite(factor)):
            raise ValidationError(f"factor must be a finite value > 0, got {factor}")
        source = np.asarray(frames, dtype=np.float32)
        if source.ndim == 1:
            source = source[:, np.newaxis]

        plan = WsolaPlan.build(factor, self.params)
        in_frames, channels = source.shape
        frame_size = plan.frame_size

        mode = effective_correlation_mode(plan.correlation_mode, channels)
        if mode is not plan.correlation_mode:
            logger.debug("WSOLA %s correlation needs 2 channels, got %d; using MONO",
                         plan.correlation_mode.name, channels)

        if in_frames <= frame_size + 2:
            logger.debug("WSOLA input too short (%d frames), returning input", in_frames)
            return WsolaResult(source, plan, in_frames, changed=False, correlation_mode=mode)

        check_cancelled(cancel)
        out_frames = max(frame_size + 2, int(round(in_frames * plan.factor)))
        output = np.zeros((out_frames, channels), dtype=np.float32)

        overlap = plan.actual_overlap
        fade_in, fade_out = equal_power_ramps(overlap)

        weights = correlation_weights(mode, plan.side_weight)
        tracks = [
            CorrelationTrack.build(signal, weight)
            for signal, weight in zip(correlation_signals(source, mode), weights)
        ]

        # Seed: copy first frame
        output[:frame_size] = source[:frame_size]
        placements: list[tuple[int, int]] = []
        written = frame_size

        out_pos = plan.hop_s
        predicted = plan.hop_a
        while out_pos + frame_size < out_frames and predicted + frame_size < in_frames:
            check_cancelled(cancel)

            references = correlation_signals(output[out_pos:out_pos + overlap], mode)
            best = find_best_match(
                tracks,
                references,
                predicted,
                plan.search_radius,
                plan.search_step,
                frame_size,
                plan.correlation_stride,
            )
            overlap_add_frame(source, best, output, out_pos, frame_size, overlap, fade_in, fade_out)
            placements.append((out_pos, best))
            written = out_pos + frame_size

            out_pos += plan.hop_s
            predicted += plan.hop_a

            if tracker is not None:
                tracker.report_fraction(out_pos / out_frames)

        logger.debug(
            "WSOLA placed %d blocks (hop_a=%d, hop_s=%d, overlap=%d, %s), %d -> %d frames",
            len(placements), plan.hop_a, plan.hop_s, overlap, mode.name, in_frames, written,
        )
        return WsolaResult(output[:written].copy(), plan, out_frames, placements, correlation_mode=mode)
