from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import JointAngles
from .metrics import MovementMetrics

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    READY = "ready"
    ECCENTRIC = "eccentric"
    BOTTOM = "bottom"
    CONCENTRIC = "concentric"
    TOP = "top"


# The only legal successor of each phase
NEXT_PHASE: Dict[Phase, Phase] = {
    Phase.READY: Phase.ECCENTRIC,
    Phase.ECCENTRIC: Phase.BOTTOM,
    Phase.BOTTOM: Phase.CONCENTRIC,
    Phase.CONCENTRIC: Phase.TOP,
    Phase.TOP: Phase.READY,
}

# Informational confidence attached to the phase entered by each transition
PHASE_CONFIDENCE: Dict[Phase, float] = {
    Phase.ECCENTRIC: 0.8,
    Phase.BOTTOM: 0.9,
    Phase.CONCENTRIC: 0.8,
    Phase.TOP: 0.9,
    Phase.READY: 0.5,
}

# Lower bounds (inclusive) for rep quality classes, best first
QUALITY_THRESHOLDS: Tuple[Tuple[str, float], ...] = (
    ("perfect", 90.0),
    ("good", 70.0),
    ("fair", 50.0),
)


def classify_quality(score: float) -> str:
    for label, lower in QUALITY_THRESHOLDS:
        if score >= lower:
            return label
    return "poor"


@dataclass(frozen=True)
class ExerciseThresholds:
    """Phase transition thresholds for one exercise (angles in degrees, depth 0-100)."""

    primary_joint: str  # knee | hip | elbow | shoulder
    top_angle: float  # primary angle above this closes the concentric phase
    bottom_angle: float  # primary angle below this reaches the bottom
    top_depth: float
    bottom_depth: float
    movement_velocity: float = 1.0  # depth delta per frame to start a rep
    reversal_velocity: float = 1.0  # upward depth delta per frame to leave the bottom


@dataclass(frozen=True)
class ExercisePhase:
    phase: Phase
    confidence: float


@dataclass(frozen=True)
class RepData:
    count: int
    quality: str
    duration_ms: float
    timestamp_ms: float
    form_score: float
    issues: Tuple[str, ...]
    angles: JointAngles
    metrics: MovementMetrics


@dataclass(frozen=True)
class PhaseUpdate:
    phase: ExercisePhase
    previous: Phase
    rep: Optional[RepData] = None

    @property
    def changed(self) -> bool:
        return self.phase.phase != self.previous


@dataclass
class PhaseState:
    phase: Phase = Phase.READY
    confidence: float = 0.0
    reps: int = 0
    rep_started_ms: Optional[float] = None
    rep_min_score: float = 100.0
    rep_issues: List[str] = field(default_factory=list)


class PhaseDetector:
    """
    Rep phase state machine driven by depth, velocity and the exercise's primary joint angle.

    ready -> eccentric: velocity > movement_velocity and depth > top_depth
    eccentric -> bottom: depth > bottom_depth or primary angle < bottom_angle
    bottom -> concentric: velocity < -reversal_velocity
    concentric -> top: depth < top_depth or primary angle > top_angle (emits RepData)
    top -> ready: unconditionally on the next valid frame

    At most one transition per frame. Missing angles/metrics leave the state untouched.
    """

    def __init__(
        self,
        thresholds: ExerciseThresholds,
        *,
        exercise: str = "squat",
        history_size: int = 100,
    ) -> None:
        self.thresholds = thresholds
        self.exercise = exercise
        self.state = PhaseState()
        self.history: Deque[ExercisePhase] = deque(maxlen=int(history_size))

    def reset(self) -> None:
        self.state = PhaseState()
        self.history.clear()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def reps(self) -> int:
        return self.state.reps

    @property
    def current(self) -> ExercisePhase:
        return ExercisePhase(phase=self.state.phase, confidence=self.state.confidence)

    def primary_angle(self, angles: JointAngles) -> float:
        return angles.mean(self.thresholds.primary_joint)

    def _exit_condition(self, angles: JointAngles, metrics: MovementMetrics) -> bool:
        t = self.thresholds
        phase = self.state.phase
        primary = self.primary_angle(angles)
        has_angle = bool(np.isfinite(primary))

        if phase is Phase.READY:
            return metrics.velocity > t.movement_velocity and metrics.depth > t.top_depth
        if phase is Phase.ECCENTRIC:
            return metrics.depth > t.bottom_depth or (has_angle and primary < t.bottom_angle)
        if phase is Phase.BOTTOM:
            return metrics.velocity < -t.reversal_velocity
        if phase is Phase.CONCENTRIC:
            return metrics.depth < t.top_depth or (has_angle and primary > t.top_angle)
        return True  # TOP always falls back to READY

    def _transition(self, target: Phase) -> Phase:
        expected = NEXT_PHASE[self.state.phase]
        if target is not expected:
            logger.debug(
                "clamped transition %s -> %s to %s", self.state.phase.value, target.value, expected.value
            )
            target = expected
        self.state.phase = target
        self.state.confidence = PHASE_CONFIDENCE[target]
        return target

    def update(
        self,
        angles: Optional[JointAngles],
        metrics: Optional[MovementMetrics],
        timestamp_ms: float,
        *,
        form_score: float = 100.0,
        issues: Sequence[str] = (),
    ) -> PhaseUpdate:
        """
        Advance the machine by at most one step for a valid frame.

        form_score/issues are this frame's form analysis; the rep's quality is derived from the
        lowest score seen between eccentric entry and top.
        """
        previous = self.state.phase
        if angles is None or metrics is None:
            return PhaseUpdate(phase=self.current, previous=previous)

        rep: Optional[RepData] = None
        if self._exit_condition(angles, metrics):
            entered = self._transition(NEXT_PHASE[previous])
            if entered is Phase.ECCENTRIC:
                self.state.rep_started_ms = float(timestamp_ms)
                self.state.rep_min_score = 100.0
                self.state.rep_issues = []
            elif entered is Phase.TOP:
                self._accumulate(form_score, issues)
                rep = self._complete_rep(angles, metrics, timestamp_ms)

        if self.state.phase in (Phase.ECCENTRIC, Phase.BOTTOM, Phase.CONCENTRIC):
            self._accumulate(form_score, issues)

        self.history.append(self.current)
        return PhaseUpdate(phase=self.current, previous=previous, rep=rep)

    def _accumulate(self, form_score: float, issues: Sequence[str]) -> None:
        self.state.rep_min_score = min(self.state.rep_min_score, float(form_score))
        for issue in issues:
            if issue not in self.state.rep_issues:
                self.state.rep_issues.append(issue)

    def _complete_rep(self, angles: JointAngles, metrics: MovementMetrics, timestamp_ms: float) -> RepData:
        started = self.state.rep_started_ms if self.state.rep_started_ms is not None else float(timestamp_ms)
        self.state.reps += 1
        score = self.state.rep_min_score
        rep = RepData(
            count=self.state.reps,
            quality=classify_quality(score),
            duration_ms=float(timestamp_ms) - started,
            timestamp_ms=float(timestamp_ms),
            form_score=score,
            issues=tuple(self.state.rep_issues),
            angles=angles,
            metrics=metrics,
        )
        logger.info(
            "%s rep %d complete: quality=%s score=%.0f duration=%.0fms",
            self.exercise, rep.count, rep.quality, rep.form_score, rep.duration_ms,
        )
        self.state.rep_started_ms = None
        self.state.rep_min_score = 100.0
        self.state.rep_issues = []
        return rep

    def phase_trend(self, n: int = 10) -> List[Phase]:
        """The last n phases (one entry per valid frame), oldest first."""
        return [p.phase for p in list(self.history)[-n:]]
