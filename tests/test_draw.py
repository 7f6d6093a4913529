from __future__ import annotations

import numpy as np
import pytest

from analysis.tracker import ExerciseTracker
from conftest import build_frame, squat_frames, squat_rep_depths
from pose.draw import draw_feedback, draw_keypoints, render_session_video

cv2 = pytest.importorskip("cv2", reason="opencv-python not installed; drawing tests skipped")


def _image(h: int = 240, w: int = 320) -> np.ndarray:
    return np.zeros((h, w, 3), dtype=np.uint8)


def test_draw_keypoints_marks_skeleton():
    image = _image()
    out = draw_keypoints(image, build_frame(0.0, depth=30, knee=120))
    assert out is image
    assert int(out.sum()) > 0


def test_draw_keypoints_ignores_low_confidence():
    image = _image()
    draw_keypoints(image, build_frame(0.0, conf=0.1), confidence_threshold=0.3)
    assert int(image.sum()) == 0


def test_draw_feedback_overlays_result():
    tracker = ExerciseTracker("squat")
    result = tracker.process(build_frame(0.0, spine=120.0))
    assert result is not None and result.form.corrections

    image = _image()
    out = draw_feedback(image, result)
    assert out is image
    assert int(out.sum()) > 0

    untouched = _image()
    assert int(draw_feedback(untouched, None).sum()) == 0


def test_non_images_are_returned_as_is():
    frame = build_frame(0.0)
    assert draw_keypoints(None, frame) is None
    flat = np.zeros((10, 10), dtype=np.uint8)
    assert draw_keypoints(flat, frame) is flat


class _ScriptedBackend:
    """Returns one synthetic squat frame per video frame."""

    def __init__(self) -> None:
        self.frames = iter(squat_frames(squat_rep_depths()))

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def infer_frame(self, image, timestamp_ms):
        frame = next(self.frames)
        return type(frame)(timestamp_ms=timestamp_ms, keypoints=frame.keypoints, layout=frame.layout)


def test_render_session_video(tmp_path):
    src = tmp_path / "in.avi"
    writer = cv2.VideoWriter(str(src), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (160, 120))
    if not writer.isOpened():
        pytest.skip("no MJPG encoder available")
    for _ in range(len(squat_rep_depths())):
        writer.write(np.zeros((120, 160, 3), dtype=np.uint8))
    writer.release()

    tracker = ExerciseTracker("squat")
    out = tmp_path / "out.avi"
    try:
        render_session_video(str(src), str(out), backend_factory=_ScriptedBackend, tracker=tracker)
    except RuntimeError as exc:
        pytest.skip(f"video backend unavailable: {exc}")
    assert out.exists()
    assert tracker.reps == 1
