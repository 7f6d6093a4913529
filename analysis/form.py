from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .geometry import JointAngles
from .metrics import MovementMetrics
from .phases import Phase, classify_quality


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


@dataclass(frozen=True)
class FormIssue:
    joint: str
    problem: str
    severity: Severity
    angle: float
    expected_range: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class FormAnalysis:
    score: float
    issues: Tuple[FormIssue, ...] = ()
    corrections: Tuple[str, ...] = ()

    @property
    def quality(self) -> str:
        return classify_quality(self.score)

    @property
    def problems(self) -> Tuple[str, ...]:
        return tuple(issue.problem for issue in self.issues)


@dataclass(frozen=True)
class FormRule:
    """
    One declarative form check.

    fields are JointAngles names or the metric names depth/symmetry/stability/velocity.
    The rule is violated when `field <compare> threshold` holds for all (match="all") or
    any (match="any") of the fields, optionally only in one phase. NaN fields are ignored;
    a rule with no usable field is skipped.
    """

    joint: str
    problem: str
    correction: str
    severity: Severity
    penalty: float
    fields: Tuple[str, ...]
    compare: str  # "gt" | "lt"
    threshold: float
    expected_range: Optional[Tuple[float, float]] = None
    match: str = "all"
    phase: Optional[Phase] = None


_METRIC_FIELDS = ("depth", "symmetry", "stability", "velocity", "range")


def _field_value(name: str, angles: JointAngles, metrics: MovementMetrics) -> float:
    if name in _METRIC_FIELDS:
        return float(getattr(metrics, name))
    return angles.get(name)


def rule_fields_valid(rule: FormRule) -> bool:
    names = set(_METRIC_FIELDS).union(JointAngles.__dataclass_fields__)
    return bool(rule.fields) and all(f in names for f in rule.fields)


def _violates(rule: FormRule, angles: JointAngles, metrics: MovementMetrics) -> Optional[float]:
    """The offending value when the rule is violated, else None."""
    values = [_field_value(f, angles, metrics) for f in rule.fields]
    values = [v for v in values if np.isfinite(v)]
    if not values:
        return None

    if rule.compare == "gt":
        hits = [v for v in values if v > rule.threshold]
    else:
        hits = [v for v in values if v < rule.threshold]

    if rule.match == "all" and len(hits) != len(values):
        return None
    if not hits:
        return None
    # Report the worst offender
    return max(hits) if rule.compare == "gt" else min(hits)


def analyze_form(
    angles: JointAngles,
    metrics: MovementMetrics,
    phase: Phase,
    rules: Sequence[FormRule],
) -> FormAnalysis:
    """
    Score one frame: start at 100, subtract each violated rule's penalty, floor at 0.

    Pure; identical inputs give identical output.
    """
    score = 100.0
    issues: List[FormIssue] = []
    corrections: List[str] = []

    for rule in rules:
        if rule.phase is not None and rule.phase != phase:
            continue
        value = _violates(rule, angles, metrics)
        if value is None:
            continue
        score -= rule.penalty
        issues.append(
            FormIssue(
                joint=rule.joint,
                problem=rule.problem,
                severity=rule.severity,
                angle=float(value),
                expected_range=rule.expected_range,
            )
        )
        corrections.append(rule.correction)

    return FormAnalysis(score=max(0.0, score), issues=tuple(issues), corrections=tuple(corrections))
