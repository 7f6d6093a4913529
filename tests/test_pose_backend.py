from __future__ import annotations

import numpy as np
import pytest

from pose.backend import Keypoint, PoseBackend
from pose.landmarks import BLAZEPOSE


class _Lm:
    def __init__(self, x: float, y: float, visibility: float, z: float = 0.0) -> None:
        self.x = x
        self.y = y
        self.z = z
        self.visibility = visibility


class _Landmarks:
    def __init__(self, count: int) -> None:
        self.landmark = [_Lm(x=i / count, y=i / count, visibility=1.0, z=-0.1 * i) for i in range(count)]


class _Result:
    def __init__(self, pose_landmarks) -> None:
        self.pose_landmarks = pose_landmarks


class _FakePoseAll:
    def process(self, frame_rgb):
        assert isinstance(frame_rgb, np.ndarray)
        return _Result(_Landmarks(33))


class _FakePoseNone:
    def process(self, frame_rgb):
        return _Result(None)


class _FakePosePartial:
    def __init__(self, n: int) -> None:
        self.n = n

    def process(self, frame_rgb):
        return _Result(_Landmarks(self.n))


def _dummy_frame(h: int = 64, w: int = 64) -> np.ndarray:
    # BGR dummy frame
    return np.zeros((h, w, 3), dtype=np.uint8)


def test_infer_with_valid_landmarks():
    backend = PoseBackend(pose_model=_FakePoseAll())
    kps = backend.infer(_dummy_frame())
    assert len(kps) == 33
    assert all((kp is None or isinstance(kp, Keypoint)) for kp in kps)
    # Check normalization bounds
    for kp in kps:
        assert kp is not None
        assert 0.0 <= kp.x <= 1.0
        assert 0.0 <= kp.y <= 1.0
        assert 0.0 <= kp.confidence <= 1.0


def test_infer_no_pose_returns_nones():
    backend = PoseBackend(pose_model=_FakePoseNone())
    kps = backend.infer(_dummy_frame())
    assert len(kps) == 33
    assert all(kp is None for kp in kps)


def test_infer_partial_fills_with_none():
    backend = PoseBackend(pose_model=_FakePosePartial(10))
    kps = backend.infer(_dummy_frame())
    assert len(kps) == 33
    assert sum(1 for kp in kps if kp is None) == 23
    assert sum(1 for kp in kps if kp is not None) == 10




class _FakePoseNoisy:
    def process(self, frame_rgb):
        lms = _Landmarks(33)
        lms.landmark[0] = _Lm(x=1.7, y=float("nan"), visibility=-0.2, z=float("nan"))
        return _Result(lms)


def test_infer_clamps_and_keeps_depth():
    backend = PoseBackend(pose_model=_FakePoseNoisy())
    kps = backend.infer(_dummy_frame())
    assert (kps[0].x, kps[0].y, kps[0].confidence, kps[0].z) == (1.0, 0.0, 0.0, 0.0)
    assert abs(kps[3].z - (-0.3)) < 1e-12


def test_infer_rejects_non_arrays():
    backend = PoseBackend(pose_model=_FakePoseAll())
    with pytest.raises(ValueError):
        backend.infer(None)
    with pytest.raises(ValueError):
        backend.infer([[0, 0], [0, 0]])


def test_infer_frame_wraps_keypoints():
    backend = PoseBackend(pose_model=_FakePoseAll())
    frame = backend.infer_frame(_dummy_frame(), 1234.0)
    assert frame.timestamp_ms == 1234.0
    assert frame.layout is BLAZEPOSE
    assert len(frame.keypoints) == 33
    assert frame.detection_confidence == 1.0
    assert frame.keypoint("left_hip") == frame.keypoints[23]

    empty = PoseBackend(pose_model=_FakePoseNone()).infer_frame(_dummy_frame(), 0.0)
    assert empty.is_empty()
    assert empty.detection_confidence is None


def test_external_model_is_not_closed():
    class _Closable(_FakePoseAll):
        closed = False

        def close(self):
            self.closed = True

    model = _Closable()
    with PoseBackend(pose_model=model) as backend:
        backend.infer(_dummy_frame())
    assert model.closed is False
