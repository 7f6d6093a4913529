from __future__ import annotations

import pytest

from pose.backend import Keypoint, frame_from_keypoints
from pose.landmarks import BLAZEPOSE
from pose.smoothing import EmaSmoother


def _kp(x: float, y: float, c: float = 1.0) -> Keypoint:
    return Keypoint(x=x, y=y, confidence=c)


def _frame(kps, ts: float = 0.0):
    return frame_from_keypoints(kps, ts, layout=BLAZEPOSE)


def test_ema_initialization_and_update():
    sm = EmaSmoother(num_landmarks=33, alpha=0.5, min_confidence=0.5)
    kps = [None] * 33
    kps[1] = _kp(0.2, 0.4, 0.9)
    s1 = sm.update(_frame(kps))
    assert s1.keypoints[0] is None
    assert abs(s1.keypoints[1].x - 0.2) < 1e-12
    assert abs(s1.keypoints[1].y - 0.4) < 1e-12

    kps[1] = _kp(0.4, 0.6, 0.9)
    s2 = sm.update(_frame(kps, 33.0))
    # EMA: 0.5*0.4 + 0.5*0.2 = 0.3
    assert abs(s2.keypoints[1].x - 0.3) < 1e-12
    assert abs(s2.keypoints[1].y - 0.5) < 1e-12
    assert s2.keypoints[1].confidence == 0.9
    assert s2.timestamp_ms == 33.0


def test_ema_low_confidence_passes_through_and_keeps_state():
    sm = EmaSmoother(num_landmarks=33, alpha=0.8, min_confidence=0.5)
    kps = [None] * 33
    kps[0] = _kp(0.5, 0.6, 0.9)
    sm.update(_frame(kps))

    kps[0] = _kp(0.9, 0.9, 0.1)
    s2 = sm.update(_frame(kps))
    # untouched, so the confidence gate downstream still rejects it
    assert s2.keypoints[0] == kps[0]

    kps[0] = _kp(0.7, 0.6, 0.9)
    s3 = sm.update(_frame(kps))
    # EMA resumes from (0.5, 0.6): 0.8*0.7 + 0.2*0.5 = 0.66
    assert abs(s3.keypoints[0].x - 0.66) < 1e-12


def test_alpha_one_is_identity_and_reset():
    sm = EmaSmoother(num_landmarks=33, alpha=1.0)
    kps = [_kp(0.1 * (i % 10), 0.5, 0.9) for i in range(33)]
    out = sm.update(_frame(kps))
    assert out.keypoints == tuple(kps)

    sm = EmaSmoother(num_landmarks=33, alpha=0.5)
    sm.update(_frame(kps))
    sm.reset()
    moved = [_kp(0.9, 0.9, 0.9)] * 33
    assert sm.update(_frame(moved)).keypoints[0].x == 0.9


def test_invalid_arguments():
    with pytest.raises(ValueError):
        EmaSmoother(num_landmarks=33, alpha=0.0)
    with pytest.raises(ValueError):
        EmaSmoother(num_landmarks=0)
    sm = EmaSmoother(num_landmarks=17)
    with pytest.raises(ValueError):
        sm.update(_frame([None] * 33))


def test_tracker_smoothing_still_counts_reps():
    from analysis.config import TrackerSettings
    from analysis.tracker import ExerciseTracker
    from conftest import squat_frames, squat_rep_depths

    tracker = ExerciseTracker("squat", settings=TrackerSettings(smoothing_alpha=0.8))
    tracker.run(squat_frames(squat_rep_depths()))
    assert tracker.reps == 1
