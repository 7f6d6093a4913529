from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from .events import EventBus, RepCompleted
from .phases import RepData

logger = logging.getLogger(__name__)


STORAGE_VERSION = "1.0.0"

Quality = Literal["perfect", "good", "fair", "poor"]
QUALITY_WEIGHTS: Dict[str, int] = {"perfect": 4, "good": 3, "fair": 2, "poor": 1}

MET_WEIGHTLIFTING = 6.0
DEFAULT_BODY_WEIGHT_KG = 70.0


class RepRecord(BaseModel):
    rep_number: int = Field(ge=1)
    quality: Quality
    depth: float = Field(0.0, ge=0.0, le=100.0)
    duration_ms: float = Field(0.0, ge=0.0)
    symmetry: float = Field(100.0, ge=0.0, le=100.0)
    form_score: float = Field(100.0, ge=0.0, le=100.0)
    issues: List[str] = Field(default_factory=list)
    timestamp_ms: float = 0.0


class SetData(BaseModel):
    set_number: int = Field(1, ge=1)
    exercise: str
    weight: float = Field(0.0, ge=0.0)
    target_reps: int = Field(0, ge=0)
    completed_reps: int = Field(0, ge=0)
    reps: List[RepRecord] = Field(default_factory=list)
    average_quality: float = Field(0.0, ge=0.0, le=4.0)
    rest_time_s: Optional[float] = None
    notes: Optional[str] = None


class WorkoutSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_date: date
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_min: Optional[int] = None
    exercises: List[str] = Field(default_factory=list)
    sets: List[SetData] = Field(default_factory=list)
    total_reps: int = 0
    total_volume: float = 0.0
    perfect_reps: int = 0
    good_reps: int = 0
    fair_reps: int = 0
    poor_reps: int = 0
    calories_burned: Optional[int] = None
    notes: Optional[str] = None


class ExerciseStats(BaseModel):
    sessions: int = 0
    total_reps: int = 0
    total_volume: float = 0.0
    best_set: int = 0
    pr: float = 0.0
    average_quality: float = 0.0
    last_performed: Optional[datetime] = None


class Statistics(BaseModel):
    total_workouts: int = 0
    total_reps: int = 0
    total_volume: float = 0.0
    total_time_min: int = 0
    total_calories: int = 0
    exercise_stats: Dict[str, ExerciseStats] = Field(default_factory=dict)
    current_streak: int = 0
    longest_streak: int = 0
    last_workout_date: Optional[date] = None


class CoachData(BaseModel):
    version: str = STORAGE_VERSION
    body_weight_kg: Optional[float] = None
    sessions: List[WorkoutSession] = Field(default_factory=list)
    current_session: Optional[WorkoutSession] = None
    statistics: Statistics = Field(default_factory=Statistics)


# ---- reducers -------------------------------------------------------------


def rep_record_from(rep: RepData) -> RepRecord:
    return RepRecord(
        rep_number=rep.count,
        quality=rep.quality,
        depth=rep.metrics.depth,
        duration_ms=max(0.0, rep.duration_ms),
        symmetry=rep.metrics.symmetry,
        form_score=rep.form_score,
        issues=list(rep.issues),
        timestamp_ms=rep.timestamp_ms,
    )


def average_quality(reps: Sequence[Union[RepRecord, str]]) -> float:
    """Weighted quality (perfect=4 ... poor=1) divided by the rep count; 0 for no reps."""
    if not reps:
        return 0.0
    labels = [r if isinstance(r, str) else r.quality for r in reps]
    return float(sum(QUALITY_WEIGHTS[q] for q in labels) / len(labels))


def summarize_set(
    exercise: str,
    weight: float,
    target_reps: int,
    reps: Sequence[RepRecord],
    *,
    set_number: int = 1,
    rest_time_s: Optional[float] = None,
) -> SetData:
    return SetData(
        set_number=set_number,
        exercise=exercise,
        weight=weight,
        target_reps=target_reps,
        completed_reps=len(reps),
        reps=list(reps),
        average_quality=average_quality(reps),
        rest_time_s=rest_time_s,
    )


def start_workout(exercise: str, start_time: datetime) -> WorkoutSession:
    return WorkoutSession(session_date=start_time.date(), start_time=start_time, exercises=[exercise])


def add_set(session: WorkoutSession, set_data: SetData) -> WorkoutSession:
    """Fold one set into the session totals and quality histogram."""
    histogram = {q: 0 for q in QUALITY_WEIGHTS}
    for rep in set_data.reps:
        histogram[rep.quality] += 1

    exercises = list(session.exercises)
    if set_data.exercise not in exercises:
        exercises.append(set_data.exercise)

    return session.model_copy(
        update={
            "sets": [*session.sets, set_data],
            "exercises": exercises,
            "total_reps": session.total_reps + set_data.completed_reps,
            "total_volume": session.total_volume + set_data.weight * set_data.completed_reps,
            "perfect_reps": session.perfect_reps + histogram["perfect"],
            "good_reps": session.good_reps + histogram["good"],
            "fair_reps": session.fair_reps + histogram["fair"],
            "poor_reps": session.poor_reps + histogram["poor"],
        }
    )


def apply_set_to_statistics(stats: Statistics, set_data: SetData, when: datetime) -> Statistics:
    """Global and per-exercise totals, PR weight, best set and running average quality."""
    previous = stats.exercise_stats.get(set_data.exercise, ExerciseStats())
    total_reps = previous.total_reps + set_data.completed_reps
    set_quality = sum(QUALITY_WEIGHTS[r.quality] for r in set_data.reps)
    if total_reps > 0:
        avg = (previous.average_quality * previous.total_reps + set_quality) / total_reps
    else:
        avg = previous.average_quality

    ex = previous.model_copy(
        update={
            "total_reps": total_reps,
            "total_volume": previous.total_volume + set_data.weight * set_data.completed_reps,
            "pr": max(previous.pr, set_data.weight),
            "best_set": max(previous.best_set, set_data.completed_reps),
            "average_quality": float(avg),
            "last_performed": when,
        }
    )
    return stats.model_copy(
        update={
            "total_reps": stats.total_reps + set_data.completed_reps,
            "total_volume": stats.total_volume + set_data.weight * set_data.completed_reps,
            "exercise_stats": {**stats.exercise_stats, set_data.exercise: ex},
        }
    )


def update_streak(stats: Statistics, day: date) -> Statistics:
    """Consecutive days extend the streak, a gap resets it to 1.

    The same day, or a day before the last workout, leaves the statistics unchanged.
    """
    last = stats.last_workout_date
    if last is not None and day <= last:
        return stats
    if last is not None and day - last == timedelta(days=1):
        current = stats.current_streak + 1
    else:
        current = 1
    return stats.model_copy(
        update={
            "current_streak": current,
            "longest_streak": max(stats.longest_streak, current),
            "last_workout_date": day,
        }
    )


def finish_workout(
    session: WorkoutSession,
    end_time: datetime,
    *,
    body_weight_kg: Optional[float] = None,
    notes: Optional[str] = None,
) -> WorkoutSession:
    """Close the session: duration in minutes and calories as MET x body weight x hours."""
    duration = max(0, round((end_time - session.start_time).total_seconds() / 60.0))
    weight = body_weight_kg or DEFAULT_BODY_WEIGHT_KG
    calories = round(MET_WEIGHTLIFTING * weight * (duration / 60.0))
    update: Dict[str, Any] = {"end_time": end_time, "duration_min": duration, "calories_burned": calories}
    if notes:
        update["notes"] = notes
    return session.model_copy(update=update)


def apply_workout_to_statistics(stats: Statistics, session: WorkoutSession) -> Statistics:
    exercise_stats = dict(stats.exercise_stats)
    for name in session.exercises:
        ex = exercise_stats.get(name, ExerciseStats())
        exercise_stats[name] = ex.model_copy(update={"sessions": ex.sessions + 1})

    updated = stats.model_copy(
        update={
            "total_workouts": stats.total_workouts + 1,
            "total_time_min": stats.total_time_min + (session.duration_min or 0),
            "total_calories": stats.total_calories + (session.calories_burned or 0),
            "exercise_stats": exercise_stats,
        }
    )
    day = (session.end_time or session.start_time).date()
    return update_streak(updated, day)


# ---- storage --------------------------------------------------------------


class SessionStore(Protocol):
    def load(self) -> CoachData: ...

    def save(self, data: CoachData) -> None: ...


def _parse_version(version: str) -> tuple:
    try:
        return tuple(int(p) for p in str(version).split("."))
    except ValueError:
        return (0,)


def migrate(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a stored document up to STORAGE_VERSION. Documents from a newer version are rejected."""
    version = raw.get("version", "0.0.0")
    if version == STORAGE_VERSION:
        return raw
    if _parse_version(version) > _parse_version(STORAGE_VERSION):
        raise ValueError(f"coach data version {version} is newer than supported {STORAGE_VERSION}")

    logger.info("migrating coach data from version %s to %s", version, STORAGE_VERSION)
    migrated = dict(raw)
    migrated.setdefault("sessions", [])
    migrated.setdefault("statistics", {})
    migrated["version"] = STORAGE_VERSION
    return migrated


class JsonSessionStore:
    """CoachData persisted as one JSON document. Writes go through a temp file and os.replace."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> CoachData:
        if not self.path.exists():
            return CoachData()
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        return CoachData.model_validate(migrate(raw))

    def save(self, data: CoachData) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(data.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


# ---- recorder -------------------------------------------------------------


class SessionRecorder:
    """
    Collects completed reps from a tracker's event bus into sets and workouts.

    The store is injected; the recorder loads once and saves after every closed set
    and finished workout.
    """

    def __init__(self, store: SessionStore, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock
        self.data = store.load()
        self.pending: List[RepRecord] = []
        self._pending_exercise: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, bus: EventBus) -> None:
        self.detach()
        self._unsubscribe = bus.subscribe(RepCompleted, self.on_rep)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_rep(self, event: RepCompleted) -> None:
        if self._pending_exercise is not None and event.exercise != self._pending_exercise:
            logger.warning(
                "rep for %s while a %s set is open; ignoring", event.exercise, self._pending_exercise
            )
            return
        self._pending_exercise = event.exercise
        self.pending.append(rep_record_from(event.rep))

    def start_workout(self, exercise: str) -> WorkoutSession:
        session = start_workout(exercise, self.clock())
        self.data = self.data.model_copy(update={"current_session": session})
        logger.info("workout %s started (%s)", session.id, exercise)
        return session

    def close_set(self, *, weight: float = 0.0, target_reps: int = 0) -> Optional[SetData]:
        """Turn the pending reps into a set. Returns None when no rep was recorded."""
        if not self.pending or self._pending_exercise is None:
            return None
        exercise = self._pending_exercise
        if self.data.current_session is None:
            self.start_workout(exercise)
        session = self.data.current_session

        set_data = summarize_set(
            exercise, weight, target_reps, self.pending, set_number=len(session.sets) + 1
        )
        now = self.clock()
        self.data = self.data.model_copy(
            update={
                "current_session": add_set(session, set_data),
                "statistics": apply_set_to_statistics(self.data.statistics, set_data, now),
            }
        )
        self.pending = []
        self._pending_exercise = None
        self.store.save(self.data)
        logger.info(
            "set %d closed: %s %d reps @ %.1fkg", set_data.set_number, exercise, set_data.completed_reps, weight
        )
        return set_data

    def finish_workout(self, *, notes: Optional[str] = None) -> Optional[WorkoutSession]:
        session = self.data.current_session
        if session is None:
            return None
        finished = finish_workout(session, self.clock(), body_weight_kg=self.data.body_weight_kg, notes=notes)
        self.data = self.data.model_copy(
            update={
                "sessions": [*self.data.sessions, finished],
                "current_session": None,
                "statistics": apply_workout_to_statistics(self.data.statistics, finished),
            }
        )
        self.store.save(self.data)
        logger.info("workout %s finished: %d reps, %d min", finished.id, finished.total_reps, finished.duration_min or 0)
        return finished
