from __future__ import annotations

import json
import uuid

import pytest

from analysis.analyzer import analyze_session
from analysis.errors import ExerciseConfigError
from conftest import build_frame, squat_frames, squat_rep_depths


def test_analyze_session_counts_reps_and_phases():
    depths = squat_rep_depths()
    frames = squat_frames(depths) + squat_frames(depths[1:], lowest_knee=110.0, start_ms=len(depths) * 100.0)
    out = analyze_session(frames, "squat")

    uuid.UUID(out["session_id"])
    assert out["exercise"] == "squat"
    summary = out["summary"]
    assert summary["total_reps"] == 2
    assert summary["quality"] == {"perfect": 1, "good": 1, "fair": 0, "poor": 0}
    assert summary["good_form_reps"] == 2
    assert summary["average_quality"] == 3.5
    assert summary["common_issues"] == ["Profondità insufficiente"]

    reps = out["reps"]
    assert [r["rep_id"] for r in reps] == [1, 2]
    assert reps[1]["issues"] == ["Profondità insufficiente"]
    assert reps[1]["form_score"] == 85.0
    assert reps[0]["range"] > 0

    assert len(out["phase_changes"]) == 10
    first = out["phase_changes"][0]
    assert (first["from"], first["to"], first["confidence"]) == ("ready", "eccentric", 0.8)

    # JSON-serializable as-is
    json.dumps(out)


def test_analyze_session_frame_accounting():
    frames = [
        build_frame(0.0),
        build_frame(100.0, conf=0.1),
        build_frame(100.0),
        build_frame(200.0, low=("right_hip",)),
        build_frame(300.0, depth=10),
    ]
    counts = analyze_session(frames)["summary"]["frames"]
    assert counts["total"] == 5
    assert counts["analyzed"] == 2
    assert counts["skipped"] == {"stale": 1, "low_confidence": 1, "missing_joints": 1}


def test_analyze_session_empty():
    out = analyze_session([], "bench-press")
    assert out["exercise"] == "bench-press"
    assert out["summary"]["total_reps"] == 0
    assert out["summary"]["worst_risk"] is None
    assert out["reps"] == [] and out["phase_changes"] == []


def test_analyze_session_unknown_exercise():
    with pytest.raises(ExerciseConfigError):
        analyze_session([], "burpee")
