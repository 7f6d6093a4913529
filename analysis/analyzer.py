from __future__ import annotations

import uuid
from collections import Counter
from typing import Dict, Iterable, List, Optional

from pose.backend import Frame
from .config import TrackerSettings
from .events import EmergencyStop, EventBus, PhaseChanged, RepCompleted
from .risk import InjuryRisk
from .session import average_quality
from .tracker import ExerciseTracker, LoadContext


def _risk_dict(risk: InjuryRisk) -> Dict[str, object]:
    return {
        "overall_risk": risk.overall_risk,
        "risk_level": risk.risk_level,
        "requires_stop": risk.requires_stop,
        "patterns": [
            {
                "id": p.id,
                "category": p.category,
                "severity": p.severity.value,
                "body_parts": list(p.body_parts),
                "description": p.description,
                "threshold": p.threshold,
                "current_value": p.current_value,
                "trend": p.trend.value,
            }
            for p in risk.primary_risks
        ],
        "body_part_risks": dict(risk.body_part_risks),
        "recommendations": list(risk.recommendations),
    }


def analyze_session(
    frames: Iterable[Frame],
    exercise: str = "squat",
    *,
    settings: Optional[TrackerSettings] = None,
    load: Optional[LoadContext] = None,
) -> Dict[str, object]:
    """
    Run a finite frame sequence through one tracker and return a JSON-serializable dict.

    Output structure (example):
    {
      "session_id": "<uuid4>",
      "exercise": "squat",
      "summary": {
        "total_reps": 1, "good_form_reps": 1, "average_quality": 4.0,
        "quality": {"perfect": 1, "good": 0, "fair": 0, "poor": 0},
        "common_issues": ["Profondità insufficiente"],
        "worst_risk": {...} | None, "emergency_stop": false,
        "frames": {"total": 40, "analyzed": 38, "skipped": {"stale": 0, "low_confidence": 2, "missing_joints": 0}}
      },
      "reps": [{"rep_id": 1, "quality": "perfect", "form_score": 100.0, "duration_ms": 900.0, ...}],
      "phase_changes": [{"timestamp_ms": 300.0, "from": "ready", "to": "eccentric", "confidence": 0.8}]
    }

    Raises ExerciseConfigError for an unknown exercise.
    """
    bus = EventBus()
    tracker = ExerciseTracker(exercise, settings=settings or TrackerSettings(), bus=bus, load=load)

    reps: List[Dict[str, object]] = []
    phase_changes: List[Dict[str, object]] = []
    stops: List[float] = []

    def on_rep(event: RepCompleted) -> None:
        rep = event.rep
        reps.append(
            {
                "rep_id": rep.count,
                "quality": rep.quality,
                "form_score": rep.form_score,
                "duration_ms": rep.duration_ms,
                "timestamp_ms": rep.timestamp_ms,
                "depth": rep.metrics.depth,
                "symmetry": rep.metrics.symmetry,
                "range": rep.metrics.range,
                "issues": list(rep.issues),
            }
        )

    def on_phase(event: PhaseChanged) -> None:
        phase_changes.append(
            {
                "timestamp_ms": event.timestamp_ms,
                "from": event.previous,
                "to": event.phase.phase.value,
                "confidence": event.phase.confidence,
            }
        )

    bus.subscribe(RepCompleted, on_rep)
    bus.subscribe(PhaseChanged, on_phase)
    bus.subscribe(EmergencyStop, lambda event: stops.append(event.timestamp_ms))

    total = 0
    analyzed = 0
    worst: Optional[InjuryRisk] = None
    issue_counts: Counter = Counter()
    for frame in frames:
        total += 1
        result = tracker.process(frame)
        if result is None:
            continue
        analyzed += 1
        issue_counts.update(result.form.problems)
        risk = result.risk
        if risk.primary_risks and (worst is None or risk.overall_risk > worst.overall_risk):
            worst = risk

    histogram = Counter(r["quality"] for r in reps)
    quality = {q: int(histogram.get(q, 0)) for q in ("perfect", "good", "fair", "poor")}

    return {
        "session_id": str(uuid.uuid4()),
        "exercise": tracker.exercise,
        "summary": {
            "total_reps": tracker.reps,
            "good_form_reps": quality["perfect"] + quality["good"],
            "average_quality": average_quality([str(r["quality"]) for r in reps]),
            "quality": quality,
            "common_issues": [problem for problem, _ in issue_counts.most_common()],
            "worst_risk": _risk_dict(worst) if worst is not None else None,
            "emergency_stop": bool(stops),
            "frames": {"total": total, "analyzed": analyzed, "skipped": dict(tracker.skipped)},
        },
        "reps": reps,
        "phase_changes": phase_changes,
    }

