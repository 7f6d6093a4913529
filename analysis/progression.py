from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from .session import ExerciseStats, WorkoutSession

logger = logging.getLogger(__name__)


Objective = Literal["strength", "hypertrophy", "endurance", "power"]
Adjustment = Literal["increase", "maintain", "decrease"]

# Fallback one-rep max (kg) when there is no personal record yet
DEFAULT_ESTIMATED_MAX: Dict[str, float] = {"squat": 100.0, "bench-press": 80.0, "deadlift": 120.0}
WEIGHT_STEP_KG = 2.5
MIN_WEIGHT_KG = 20.0


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def estimate_1rm(weight: float, reps: int) -> float:
    """Epley estimate of the one-rep max, rounded to the nearest kg."""
    if weight < 0 or reps < 0:
        raise ValueError("weight and reps must be non-negative")
    return _round_half_up(weight * (1.0 + reps / 30.0))


def round_to_plates(weight: float, step: float = WEIGHT_STEP_KG) -> float:
    return _round_half_up(weight / step) * step


@dataclass(frozen=True)
class WorkoutPlan:
    target_reps: int = 10
    target_sets: int = 3
    rest_time_s: float = 90.0
    objective: Objective = "hypertrophy"


@dataclass(frozen=True)
class WeightRecommendation:
    recommended: float
    min: float
    max: float
    confidence: float  # 0-100, grows with the available history
    reasoning: Tuple[str, ...]
    adjustment: Adjustment


def objective_percentage(plan: WorkoutPlan) -> Tuple[float, str]:
    """Share of the one-rep max for the plan's objective and rep target."""
    reps = plan.target_reps
    if plan.objective == "power":
        return 95.0 - (reps - 1) * 2.5, "Obiettivo Potenza: peso quasi massimale"
    if plan.objective == "strength":
        return 90.0 - (reps - 3) * 2.5, "Obiettivo Forza: peso elevato, poche reps"
    if plan.objective == "hypertrophy":
        return 85.0 - (reps - 6) * 1.5, "Obiettivo Ipertrofia: volume ottimale"
    if plan.objective == "endurance":
        return 75.0 - (reps - 12) * 1.0, "Obiettivo Resistenza: peso moderato, molte reps"
    raise ValueError(f"unknown objective: {plan.objective!r}")


def session_quality(session: WorkoutSession) -> Optional[float]:
    """Share of perfect reps in the session (0-100); None for an empty session."""
    if session.total_reps <= 0:
        return None
    return session.perfect_reps / session.total_reps * 100.0


def last_weight_for(exercise: str, sessions: Sequence[WorkoutSession]) -> Optional[float]:
    for session in reversed(sessions):
        weights = [s.weight for s in session.sets if s.exercise == exercise and s.weight > 0]
        if weights:
            return weights[-1]
    return None


def recommend_weight(
    exercise: str,
    plan: WorkoutPlan,
    sessions: Sequence[WorkoutSession],
    *,
    exercise_stats: Optional[ExerciseStats] = None,
    estimated_max: Optional[float] = None,
    last_weight: Optional[float] = None,
    custom_weight: Optional[float] = None,
) -> WeightRecommendation:
    """
    Suggest a working weight for the next set of `exercise`.

    `sessions` is the workout history in chronological order; only sessions that
    include the exercise are considered. The base is a share of the one-rep max picked
    by the plan's objective, nudged by recent form quality. A custom weight replaces the
    computed base. The result is rounded to 2.5 kg plates with a +/-5 kg band.
    """
    history: List[WorkoutSession] = [s for s in sessions if exercise in s.exercises]
    recent = history[::-1]

    one_rm = estimated_max
    if one_rm is None and exercise_stats is not None and exercise_stats.pr > 0:
        one_rm = exercise_stats.pr
    if one_rm is None:
        one_rm = DEFAULT_ESTIMATED_MAX.get(exercise, 60.0)

    percentage, reason = objective_percentage(plan)
    reasoning: List[str] = [reason]

    if recent:
        qualities = [q for q in (session_quality(s) for s in recent[:3]) if q is not None]
        if qualities:
            recent_quality = sum(qualities) / len(qualities)
            if recent_quality > 80:
                percentage += 2.5
                reasoning.append("Ottima forma recente: +2.5%")
            elif recent_quality < 50:
                percentage -= 5.0
                reasoning.append("Forma da migliorare: -5%")

        last_quality = session_quality(recent[0])
        if last_quality is not None and last_quality > 90:
            percentage += 2.5
            reasoning.append("Ultima sessione perfetta: +2.5%")

        if len(recent) >= 3:
            old_avg = sum(s.total_volume for s in recent[-3:]) / 3.0
            new_avg = sum(s.total_volume for s in recent[:3]) / 3.0
            if new_avg > old_avg * 1.1:
                reasoning.append("Trend positivo rilevato")
    else:
        percentage -= 10.0
        reasoning.append("Prima sessione: inizia conservativo")

    base = custom_weight if custom_weight else one_rm * percentage / 100.0
    recommended = round_to_plates(base)

    if last_weight is None:
        last_weight = last_weight_for(exercise, history)
    adjustment: Adjustment = "maintain"
    if last_weight:
        if recommended > last_weight + WEIGHT_STEP_KG:
            adjustment = "increase"
        elif recommended < last_weight - WEIGHT_STEP_KG:
            adjustment = "decrease"

    confidence = min(100.0, 60.0 + 5.0 * len(history) + (10.0 if exercise_stats is not None else 0.0))
    logger.debug("%s: %.1f%% of %.1f kg -> %.1f kg (%s)", exercise, percentage, one_rm, recommended, adjustment)
    return WeightRecommendation(
        recommended=recommended,
        min=max(MIN_WEIGHT_KG, recommended - 5.0),
        max=recommended + 5.0,
        confidence=confidence,
        reasoning=tuple(reasoning),
        adjustment=adjustment,
    )
