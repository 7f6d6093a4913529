from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .errors import ExerciseConfigError
from .form import FormRule, Severity, rule_fields_valid
from .geometry import ANGLE_TRIPLES, BILATERAL_JOINTS
from .phases import ExerciseThresholds, Phase
from .risk import RiskThresholds


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class TrackerSettings:
    """Tunables shared by every exercise. Override via FORMCOACH_* environment variables."""

    min_confidence: float = 0.5
    history_size: int = 100
    stability_window: int = 10
    stability_gain: float = 2.0
    depth_gain: float = 1.0
    depth_offset: float = 0.0
    trend_lookback: int = 3
    risk_history_size: int = 100
    phase_history_size: int = 100
    smoothing_alpha: float = 1.0  # 1.0 = no smoothing
    severe_only_issue_events: bool = True

    @classmethod
    def from_env(cls) -> "TrackerSettings":
        d = cls()
        return cls(
            min_confidence=_get_env_float("FORMCOACH_MIN_CONFIDENCE", d.min_confidence),
            history_size=_get_env_int("FORMCOACH_HISTORY_SIZE", d.history_size),
            stability_window=_get_env_int("FORMCOACH_STABILITY_WINDOW", d.stability_window),
            stability_gain=_get_env_float("FORMCOACH_STABILITY_GAIN", d.stability_gain),
            depth_gain=_get_env_float("FORMCOACH_DEPTH_GAIN", d.depth_gain),
            depth_offset=_get_env_float("FORMCOACH_DEPTH_OFFSET", d.depth_offset),
            trend_lookback=_get_env_int("FORMCOACH_TREND_LOOKBACK", d.trend_lookback),
            risk_history_size=_get_env_int("FORMCOACH_RISK_HISTORY_SIZE", d.risk_history_size),
            phase_history_size=_get_env_int("FORMCOACH_PHASE_HISTORY_SIZE", d.phase_history_size),
            smoothing_alpha=_get_env_float("FORMCOACH_SMOOTHING_ALPHA", d.smoothing_alpha),
            severe_only_issue_events=bool(_get_env_int("FORMCOACH_SEVERE_ONLY_ISSUES", int(d.severe_only_issue_events))),
        )

    def with_overrides(self, **changes) -> "TrackerSettings":
        try:
            return dataclasses.replace(self, **changes)
        except TypeError as exc:
            raise ExerciseConfigError(f"unknown tracker setting: {exc}") from exc


@dataclass(frozen=True)
class ExerciseConfig:
    """Everything the tracker needs to know about one exercise."""

    name: str
    thresholds: ExerciseThresholds
    symmetry_joints: Tuple[str, ...]
    required_angles: Tuple[str, ...]
    form_rules: Tuple[FormRule, ...]
    risk: RiskThresholds

    def validate(self) -> "ExerciseConfig":
        t = self.thresholds
        if t.primary_joint not in BILATERAL_JOINTS:
            raise ExerciseConfigError(f"{self.name}: unknown primary joint '{t.primary_joint}'")
        if t.top_depth >= t.bottom_depth:
            raise ExerciseConfigError(f"{self.name}: top_depth must be below bottom_depth")
        if t.bottom_angle >= t.top_angle:
            raise ExerciseConfigError(f"{self.name}: bottom_angle must be below top_angle")
        if t.movement_velocity < 0 or t.reversal_velocity < 0:
            raise ExerciseConfigError(f"{self.name}: velocity thresholds must be non-negative")
        for joint in self.symmetry_joints:
            if joint not in BILATERAL_JOINTS:
                raise ExerciseConfigError(f"{self.name}: '{joint}' is not a bilateral joint")
        for angle in self.required_angles:
            if angle not in ANGLE_TRIPLES:
                raise ExerciseConfigError(f"{self.name}: unknown required angle '{angle}'")
        for rule in self.form_rules:
            if rule.penalty < 0:
                raise ExerciseConfigError(f"{self.name}: negative penalty for '{rule.problem}'")
            if rule.compare not in ("gt", "lt") or rule.match not in ("all", "any"):
                raise ExerciseConfigError(f"{self.name}: malformed rule '{rule.problem}'")
            if not rule_fields_valid(rule):
                raise ExerciseConfigError(f"{self.name}: rule '{rule.problem}' references unknown fields")
        return self

    def with_overrides(self, **changes) -> "ExerciseConfig":
        """Copy with top-level fields replaced. Use `thresholds=cfg.thresholds.with...` for nested ones."""
        try:
            updated = dataclasses.replace(self, **changes)
        except TypeError as exc:
            raise ExerciseConfigError(f"unknown exercise config field: {exc}") from exc
        return updated.validate()

    def with_thresholds(self, **changes) -> "ExerciseConfig":
        try:
            thresholds = dataclasses.replace(self.thresholds, **changes)
        except TypeError as exc:
            raise ExerciseConfigError(f"unknown threshold field: {exc}") from exc
        return self.with_overrides(thresholds=thresholds)


UNSTABLE_MOVEMENT = FormRule(
    joint="corpo",
    problem="Movimento instabile",
    correction="Mantieni il controllo durante tutto il movimento",
    severity=Severity.MINOR,
    penalty=10.0,
    fields=("stability",),
    compare="lt",
    threshold=60.0,
)


SQUAT = ExerciseConfig(
    name="squat",
    thresholds=ExerciseThresholds(
        primary_joint="knee",
        top_angle=160.0,
        bottom_angle=90.0,
        top_depth=30.0,
        bottom_depth=70.0,
    ),
    symmetry_joints=("knee", "hip"),
    required_angles=("left_knee", "right_knee", "left_hip", "right_hip", "spine"),
    form_rules=(
        FormRule(
            joint="ginocchia",
            problem="Profondità insufficiente",
            correction="Scendi più in basso, anche sotto le ginocchia",
            severity=Severity.MODERATE,
            penalty=15.0,
            fields=("left_knee", "right_knee"),
            compare="gt",
            threshold=100.0,
            expected_range=(80.0, 95.0),
            phase=Phase.BOTTOM,
        ),
        FormRule(
            joint="ginocchia",
            problem="Ginocchia non allineate",
            correction="Spingi le ginocchia verso l'esterno",
            severity=Severity.MODERATE,
            penalty=20.0,
            fields=("symmetry",),
            compare="lt",
            threshold=70.0,
        ),
        FormRule(
            joint="schiena",
            problem="Schiena troppo curva",
            correction="Mantieni il petto in fuori e la schiena dritta",
            severity=Severity.SEVERE,
            penalty=30.0,
            fields=("spine",),
            compare="lt",
            threshold=140.0,
            expected_range=(160.0, 180.0),
        ),
        UNSTABLE_MOVEMENT,
    ),
    risk=RiskThresholds(
        max_knee_valgus=10.0,
        max_spinal_flexion=40.0,
        max_asymmetry=15.0,
        max_descent_speed=1.0,
    ),
)

BENCH_PRESS = ExerciseConfig(
    name="bench-press",
    thresholds=ExerciseThresholds(
        primary_joint="elbow",
        top_angle=160.0,
        bottom_angle=90.0,
        top_depth=20.0,
        bottom_depth=80.0,
    ),
    symmetry_joints=("elbow", "shoulder"),
    required_angles=("left_elbow", "right_elbow", "left_shoulder", "right_shoulder"),
    form_rules=(
        FormRule(
            joint="gomiti",
            problem="Gomiti troppo aperti",
            correction="Mantieni i gomiti a 45° dal corpo",
            severity=Severity.MODERATE,
            penalty=15.0,
            fields=("left_elbow", "right_elbow"),
            compare="lt",
            threshold=70.0,
            expected_range=(75.0, 90.0),
            match="any",
            phase=Phase.BOTTOM,
        ),
        FormRule(
            joint="spalle",
            problem="Spalle troppo elevate",
            correction="Tieni le spalle basse e retratte",
            severity=Severity.MINOR,
            penalty=10.0,
            fields=("left_shoulder", "right_shoulder"),
            compare="gt",
            threshold=90.0,
            match="any",
        ),
        UNSTABLE_MOVEMENT,
    ),
    risk=RiskThresholds(max_asymmetry=10.0),
)

DEADLIFT = ExerciseConfig(
    name="deadlift",
    thresholds=ExerciseThresholds(
        primary_joint="hip",
        top_angle=170.0,
        bottom_angle=90.0,
        top_depth=20.0,
        bottom_depth=75.0,
    ),
    symmetry_joints=("knee", "hip"),
    required_angles=("left_hip", "right_hip", "left_knee", "right_knee", "spine"),
    form_rules=(
        FormRule(
            joint="schiena",
            problem="Schiena arrotondata",
            correction="ATTENZIONE! Mantieni la schiena completamente neutra",
            severity=Severity.SEVERE,
            penalty=40.0,
            fields=("spine",),
            compare="lt",
            threshold=150.0,
            expected_range=(170.0, 180.0),
        ),
        FormRule(
            joint="anche",
            problem="Anche troppo alte",
            correction="Abbassa le anche all'inizio del movimento",
            severity=Severity.MODERATE,
            penalty=15.0,
            fields=("left_hip", "right_hip"),
            compare="gt",
            threshold=120.0,
            phase=Phase.BOTTOM,
        ),
        UNSTABLE_MOVEMENT,
    ),
    risk=RiskThresholds(
        max_knee_valgus=5.0,
        max_spinal_flexion=30.0,
        max_asymmetry=10.0,
    ),
)


_REGISTRY: Dict[str, ExerciseConfig] = {}


def register_exercise(config: ExerciseConfig, *, replace: bool = False) -> ExerciseConfig:
    config.validate()
    if config.name in _REGISTRY and not replace:
        raise ExerciseConfigError(f"exercise '{config.name}' is already registered")
    _REGISTRY[config.name] = config
    return config


def get_exercise_config(name: str) -> ExerciseConfig:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise ExerciseConfigError(
            f"unknown exercise '{name}', expected one of {available_exercises()}"
        ) from None


def available_exercises() -> List[str]:
    return sorted(_REGISTRY)


for _cfg in (SQUAT, BENCH_PRESS, DEADLIFT):
    register_exercise(_cfg)
