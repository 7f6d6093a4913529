from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

import numpy as np

from pose.backend import Frame
from pose.smoothing import EmaSmoother
from .config import ExerciseConfig, TrackerSettings, get_exercise_config
from .events import EmergencyStop, EventBus, FormIssueRaised, PhaseChanged, RepCompleted, RiskDetected
from .form import FormAnalysis, Severity, analyze_form
from .geometry import JointAngles, compute_joint_angles, hip_center_y, knee_valgus_deg
from .metrics import MovementMetrics, MovementMetricsAggregator
from .phases import ExercisePhase, Phase, PhaseDetector, PhaseUpdate, RepData
from .risk import BiomechanicalSample, InjuryRisk, InjuryRiskMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadContext:
    """External training load for the overload rule; weight in kg."""

    weight: Optional[float] = None
    reps: int = 0
    sets: int = 1

    @property
    def volume_load(self) -> Optional[float]:
        if self.weight is None or self.reps <= 0:
            return None
        return float(self.weight * self.reps * max(1, self.sets))


@dataclass(frozen=True)
class FrameResult:
    timestamp_ms: float
    angles: JointAngles
    metrics: MovementMetrics
    phase: ExercisePhase
    phase_changed: bool
    form: FormAnalysis
    risk: InjuryRisk
    reps: int
    rep: Optional[RepData] = None


class ExerciseTracker:
    """
    One tracking session for one exercise.

    process() runs a single synchronous pass per frame:
    dedup -> confidence gate -> geometry -> metrics -> form -> phase -> risk -> events.
    Skipped frames leave every buffer untouched.
    """

    def __init__(
        self,
        exercise: Union[str, ExerciseConfig] = "squat",
        *,
        settings: Optional[TrackerSettings] = None,
        bus: Optional[EventBus] = None,
        load: Optional[LoadContext] = None,
    ) -> None:
        self.config = get_exercise_config(exercise) if isinstance(exercise, str) else exercise.validate()
        self.settings = settings or TrackerSettings()
        self.bus = bus or EventBus()
        self.load = load or LoadContext()

        s = self.settings
        self.metrics = MovementMetricsAggregator(
            symmetry_joints=self.config.symmetry_joints,
            history_size=s.history_size,
            stability_window=s.stability_window,
            stability_gain=s.stability_gain,
            depth_gain=s.depth_gain,
            depth_offset=s.depth_offset,
            min_confidence=s.min_confidence,
        )
        self.detector = PhaseDetector(
            self.config.thresholds,
            exercise=self.config.name,
            history_size=s.phase_history_size,
        )
        self.monitor = InjuryRiskMonitor(
            self.config.risk,
            history_size=s.risk_history_size,
            lookback=s.trend_lookback,
        )
        self._smoother: Optional[EmaSmoother] = None

        self.active = True
        self.last_timestamp_ms: Optional[float] = None
        self.skipped: Dict[str, int] = {"stale": 0, "low_confidence": 0, "missing_joints": 0}
        self.last_result: Optional[FrameResult] = None
        self._reset_session_state()

    def _reset_session_state(self) -> None:
        self._last_valid_ms: Optional[float] = None
        self._last_velocity: Optional[float] = None
        self._rep_started_ms: Optional[float] = None
        self._first_rep_score: Optional[float] = None
        self._last_rep_score: Optional[float] = None
        self._stop_raised = False

    @property
    def exercise(self) -> str:
        return self.config.name

    @property
    def reps(self) -> int:
        return self.detector.reps

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        """Halt frame processing. State is kept; call reset() to clear it."""
        self.active = False

    def reset(self) -> None:
        self.detector.reset()
        self.metrics.reset()
        self.monitor.reset()
        if self._smoother is not None:
            self._smoother.reset()
        self.last_timestamp_ms = None
        self.last_result = None
        for key in self.skipped:
            self.skipped[key] = 0
        self._reset_session_state()
        logger.info("%s tracker reset", self.exercise)

    def set_load(self, load: LoadContext) -> None:
        self.load = load

    def _smooth(self, frame: Frame) -> Frame:
        alpha = self.settings.smoothing_alpha
        if self._smoother is None or self._smoother.num_landmarks != len(frame.keypoints):
            self._smoother = EmaSmoother(
                len(frame.keypoints), alpha=alpha, min_confidence=self.settings.min_confidence
            )
        return self._smoother.update(frame)

    def process(self, frame: Frame) -> Optional[FrameResult]:
        """Run one frame through the pipeline. Returns None when the frame was skipped."""
        if not self.active:
            return None

        ts = float(frame.timestamp_ms)
        if not math.isfinite(ts):
            self.skipped["stale"] += 1
            logger.debug("frame dropped: non-finite timestamp %r", ts)
            return None
        if self.last_timestamp_ms is not None and ts <= self.last_timestamp_ms:
            self.skipped["stale"] += 1
            logger.debug("frame t=%.0f dropped: not after t=%.0f", ts, self.last_timestamp_ms)
            return None
        self.last_timestamp_ms = ts

        if frame.is_empty() or frame.average_confidence() < self.settings.min_confidence:
            self.skipped["low_confidence"] += 1
            logger.debug("frame t=%.0f skipped: low confidence", ts)
            return None

        min_conf = self.settings.min_confidence
        required = self.config.required_angles
        # Gate on the raw frame so a rejected frame never reaches the smoother
        angles = compute_joint_angles(frame, required=required, min_confidence=min_conf)
        if angles is None or not np.isfinite(hip_center_y(frame, min_conf)):
            self.skipped["missing_joints"] += 1
            logger.debug("frame t=%.0f skipped: required joints not visible", ts)
            return None

        if self.settings.smoothing_alpha < 1.0:
            frame = self._smooth(frame)
            smoothed = compute_joint_angles(frame, required=required, min_confidence=min_conf)
            if smoothed is not None:
                angles = smoothed

        metrics = self.metrics.update(frame, angles)
        if metrics is None:
            self.skipped["missing_joints"] += 1
            return None

        # Form is judged against the phase the frame arrived in
        form = analyze_form(angles, metrics, self.detector.phase, self.config.form_rules)
        update = self.detector.update(angles, metrics, ts, form_score=form.score, issues=form.problems)
        if update.changed and update.phase.phase is Phase.ECCENTRIC:
            self.metrics.mark_rep_start()
            self._rep_started_ms = ts
        if update.rep is not None:
            self._on_rep(update.rep)

        sample = self.build_risk_sample(frame, angles, metrics, update, ts)
        risk = self.monitor.update(sample)

        self._last_valid_ms = ts
        self._last_velocity = metrics.velocity
        if update.phase.phase in (Phase.TOP, Phase.READY):
            self._rep_started_ms = None

        result = FrameResult(
            timestamp_ms=ts,
            angles=angles,
            metrics=metrics,
            phase=update.phase,
            phase_changed=update.changed,
            form=form,
            risk=risk,
            reps=self.detector.reps,
            rep=update.rep,
        )
        self.last_result = result
        self._publish(result, update)
        return result

    def run(self, frames: Iterable[Frame]) -> int:
        """Process frames until the source is exhausted or stop() is called. Returns frames analyzed."""
        analyzed = 0
        for frame in frames:
            if not self.active:
                break
            if self.process(frame) is not None:
                analyzed += 1
        return analyzed

    def _on_rep(self, rep: RepData) -> None:
        if self._first_rep_score is None:
            self._first_rep_score = rep.form_score
        self._last_rep_score = rep.form_score

    def _form_degradation(self) -> Optional[float]:
        if self._first_rep_score is None or self._last_rep_score is None:
            return None
        if self._first_rep_score <= 0:
            return 0.0
        drop = (self._first_rep_score - self._last_rep_score) / self._first_rep_score * 100.0
        return float(max(0.0, drop))

    def build_risk_sample(
        self,
        frame: Frame,
        angles: JointAngles,
        metrics: MovementMetrics,
        update: PhaseUpdate,
        timestamp_ms: float,
    ) -> BiomechanicalSample:
        """Derive the biomechanical risk inputs from the current valid frame."""

        def finite(value: float) -> Optional[float]:
            return float(value) if np.isfinite(value) else None

        descent = ascent = jerk = None
        if self._last_valid_ms is not None and timestamp_ms > self._last_valid_ms:
            dt_s = (timestamp_ms - self._last_valid_ms) / 1000.0
            # depth points per second, scaled to baseline fractions
            descent = max(0.0, metrics.velocity) / dt_s / 100.0
            ascent = max(0.0, -metrics.velocity) / dt_s / 100.0
        if self._last_velocity is not None:
            jerk = min(100.0, abs(metrics.velocity - self._last_velocity))

        tut = 0.0
        if self._rep_started_ms is not None:
            tut = (timestamp_ms - self._rep_started_ms) / 1000.0

        spine = angles.spine
        return BiomechanicalSample(
            timestamp_ms=timestamp_ms,
            exercise=self.exercise,
            knee_valgus=finite(knee_valgus_deg(frame, self.settings.min_confidence)),
            spinal_flexion=finite(180.0 - spine),
            left_right_imbalance=100.0 - metrics.symmetry,
            descent_speed=descent,
            ascent_speed=ascent,
            jerkiness=jerk,
            form_degradation=self._form_degradation(),
            compensatory_movement=100.0 - metrics.stability,
            time_under_tension=tut,
            weight=self.load.weight,
            reps=self.load.reps,
            sets=self.load.sets,
            volume_load=self.load.volume_load,
        )

    def _publish(self, result: FrameResult, update: PhaseUpdate) -> None:
        name = self.exercise
        ts = result.timestamp_ms
        if update.changed:
            self.bus.publish(PhaseChanged(exercise=name, previous=update.previous.value, phase=update.phase, timestamp_ms=ts))
        if update.rep is not None:
            self.bus.publish(RepCompleted(exercise=name, rep=update.rep))

        for issue in result.form.issues:
            if self.settings.severe_only_issue_events and issue.severity is not Severity.SEVERE:
                continue
            self.bus.publish(FormIssueRaised(exercise=name, issue=issue, timestamp_ms=ts))

        risk = result.risk
        if risk.primary_risks:
            self.bus.publish(RiskDetected(exercise=name, risk=risk, timestamp_ms=ts))
        if risk.requires_stop and not self._stop_raised:
            logger.warning(
                "%s emergency stop at t=%.0f: %s", name, ts, [p.description for p in risk.primary_risks]
            )
            self.bus.publish(EmergencyStop(exercise=name, risk=risk, timestamp_ms=ts))
        self._stop_raised = risk.requires_stop
