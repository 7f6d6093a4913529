from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np

from pose.backend import Frame
from .geometry import JointAngles, hip_center_y

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MovementMetrics:
    depth: float  # 0-100, higher = deeper
    symmetry: float  # 0-100
    stability: float  # 0-100
    velocity: float  # signed depth delta vs previous valid frame
    range: float = 0.0  # depth range of motion within the current rep


@dataclass(frozen=True)
class MetricsSample:
    angles: JointAngles
    metrics: MovementMetrics


def depth_from_hip(hip_y: float, baseline_hip_y: float, *, gain: float = 1.0, offset: float = 0.0) -> float:
    """Relative hip drop from the baseline, mapped to [0, 100]."""
    relative = (hip_y - baseline_hip_y) / baseline_hip_y
    return float(np.clip(offset + gain * relative * 100.0, 0.0, 100.0))


def symmetry_score(angles: JointAngles, joints: Sequence[str]) -> float:
    """100 minus the mean left/right delta over the given bilateral joints; NaN pairs are ignored."""
    diffs: List[float] = []
    for joint in joints:
        left, right = angles.pair(joint)
        if np.isfinite(left) and np.isfinite(right):
            diffs.append(abs(left - right))
    if not diffs:
        return 100.0
    return float(max(0.0, 100.0 - sum(diffs) / len(diffs)))


def stability_score(depths: Sequence[float], *, gain: float = 2.0) -> float:
    """100 minus scaled std of the depth window. Fewer than two samples -> 100."""
    if len(depths) < 2:
        return 100.0
    spread = float(np.std(np.asarray(depths, dtype=float)))
    return float(min(100.0, max(0.0, 100.0 - spread * gain)))


def compute_metrics(
    hip_y: float,
    baseline_hip_y: float,
    angles: JointAngles,
    history: Sequence[MetricsSample],
    *,
    symmetry_joints: Sequence[str] = ("knee", "hip"),
    stability_window: int = 10,
    stability_gain: float = 2.0,
    depth_gain: float = 1.0,
    depth_offset: float = 0.0,
    rep_span: Optional[Tuple[float, float]] = None,
) -> MovementMetrics:
    """
    Pure metrics computation from the current hip position, angles and bounded history.

    rep_span is the (min, max) depth seen since the current rep started, used for range.
    """
    depth = depth_from_hip(hip_y, baseline_hip_y, gain=depth_gain, offset=depth_offset)
    symmetry = symmetry_score(angles, symmetry_joints)

    recent: List[float] = []
    if stability_window > 1:
        recent = [s.metrics.depth for s in history][-(stability_window - 1):]
    stability = stability_score(recent + [depth], gain=stability_gain)

    velocity = depth - history[-1].metrics.depth if len(history) > 0 else 0.0

    lo, hi = rep_span if rep_span is not None else (depth, depth)
    rom = float(max(hi, depth) - min(lo, depth))

    return MovementMetrics(
        depth=depth,
        symmetry=symmetry,
        stability=stability,
        velocity=float(velocity),
        range=rom,
    )


class MovementMetricsAggregator:
    """
    Stateful wrapper around compute_metrics.

    Owns the hip baseline (set on the first valid frame) and a fixed-capacity FIFO history
    of (angles, metrics) samples. Nothing else survives between frames.
    """

    def __init__(
        self,
        *,
        symmetry_joints: Sequence[str] = ("knee", "hip"),
        history_size: int = 100,
        stability_window: int = 10,
        stability_gain: float = 2.0,
        depth_gain: float = 1.0,
        depth_offset: float = 0.0,
        min_confidence: float = 0.5,
    ) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be positive")
        self.symmetry_joints = tuple(symmetry_joints)
        self.stability_window = int(stability_window)
        self.stability_gain = float(stability_gain)
        self.depth_gain = float(depth_gain)
        self.depth_offset = float(depth_offset)
        self.min_confidence = float(min_confidence)

        self.baseline_hip_y: Optional[float] = None
        self.history: Deque[MetricsSample] = deque(maxlen=int(history_size))
        self._rep_span: Optional[Tuple[float, float]] = None

    def reset(self) -> None:
        self.baseline_hip_y = None
        self.history.clear()
        self._rep_span = None

    def mark_rep_start(self) -> None:
        """Restart range-of-motion tracking from the latest depth."""
        if self.history:
            last = self.history[-1].metrics.depth
            self._rep_span = (last, last)
        else:
            self._rep_span = None

    def update(self, frame: Frame, angles: JointAngles) -> Optional[MovementMetrics]:
        """Compute metrics for a valid frame and append them to the history.

        Returns None (and leaves all state untouched) when the hips are not usable.
        """
        hip_y = hip_center_y(frame, self.min_confidence)
        if not np.isfinite(hip_y):
            logger.debug("metrics skipped at t=%s: hips not visible", frame.timestamp_ms)
            return None

        if self.baseline_hip_y is None:
            if hip_y <= 1e-6:
                logger.debug("metrics skipped at t=%s: degenerate baseline", frame.timestamp_ms)
                return None
            self.baseline_hip_y = hip_y
            logger.debug("depth baseline set to hip_y=%.4f", hip_y)

        metrics = compute_metrics(
            hip_y,
            self.baseline_hip_y,
            angles,
            self.history,
            symmetry_joints=self.symmetry_joints,
            stability_window=self.stability_window,
            stability_gain=self.stability_gain,
            depth_gain=self.depth_gain,
            depth_offset=self.depth_offset,
            rep_span=self._rep_span,
        )
        self.history.append(MetricsSample(angles=angles, metrics=metrics))
        if self._rep_span is None:
            self._rep_span = (metrics.depth, metrics.depth)
        else:
            lo, hi = self._rep_span
            self._rep_span = (min(lo, metrics.depth), max(hi, metrics.depth))
        return metrics

    def recent_depths(self, n: Optional[int] = None) -> List[float]:
        depths = [s.metrics.depth for s in self.history]
        return depths if n is None else depths[-n:]
