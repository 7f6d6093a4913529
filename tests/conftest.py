from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from pose.backend import Frame, Keypoint, frame_from_keypoints
from pose.landmarks import BLAZEPOSE

# Standing hip height; depth d% puts the hips at BASE_HIP_Y * (1 + d/100)
BASE_HIP_Y = 0.4
SEGMENT = 0.2


def build_frame(
    timestamp_ms: float,
    *,
    depth: float = 0.0,
    knee: float = 170.0,
    spine: float = 180.0,
    elbow: float = 180.0,
    conf: float = 0.9,
    low: Iterable[str] = (),
    missing: Iterable[str] = (),
) -> Frame:
    """
    Synthetic side-on BlazePose frame with exact joint angles.

    Hips are placed by depth, knees straight below the hips, shoulders straight above
    (hip angle 180), ankles/wrists rotated to give the requested knee/elbow angle and the
    nose rotated around the left hip to give the requested spine angle. Every landmark
    slot is filled so the frame's average confidence equals `conf`.
    """
    hy = BASE_HIP_Y * (1.0 + depth / 100.0)
    pts: Dict[str, tuple] = {}
    for side, hx in (("left", 0.45), ("right", 0.55)):
        kx, ky = hx, hy + SEGMENT
        t = math.radians(knee)
        sx, sy = hx, hy - SEGMENT
        e = math.radians(elbow)
        pts[f"{side}_hip"] = (hx, hy)
        pts[f"{side}_knee"] = (kx, ky)
        pts[f"{side}_ankle"] = (kx + SEGMENT * math.sin(t), ky - SEGMENT * math.cos(t))
        pts[f"{side}_shoulder"] = (sx, sy)
        pts[f"{side}_elbow"] = (sx, sy + 0.1)
        pts[f"{side}_wrist"] = (sx + 0.1 * math.sin(e), sy + 0.1 - 0.1 * math.cos(e))

    s = math.radians(spine)
    lhx, lhy = pts["left_hip"]
    pts["nose"] = (lhx + 0.3 * math.sin(s), lhy + 0.3 * math.cos(s))

    low_set, missing_set = set(low), set(missing)
    kps: List[Optional[Keypoint]] = [Keypoint(x=0.5, y=0.1, confidence=conf)] * BLAZEPOSE.num_landmarks
    for joint, (x, y) in pts.items():
        kps[BLAZEPOSE.index(joint)] = Keypoint(x=x, y=y, confidence=0.1 if joint in low_set else conf)
    for joint in missing_set:
        kps[BLAZEPOSE.index(joint)] = None
    return frame_from_keypoints(kps, timestamp_ms, layout=BLAZEPOSE)


def squat_rep_depths(bottom: float = 85.0, top: float = 10.0, step: float = 5.0) -> List[float]:
    """Baseline frame, descent to `bottom`, ascent back to `top`, then two standing frames."""
    down = [0.0]
    d = step
    while d <= bottom + 1e-9:
        down.append(d)
        d += step
    up = []
    d = bottom - step
    while d >= top - 1e-9:
        up.append(d)
        d -= step
    return down + up + [top, top]


def knee_for_depth(depth: float, *, lowest: float = 75.0, bottom: float = 85.0, top: float = 10.0) -> float:
    """Knee angle going 170 -> `lowest` as depth goes top -> bottom."""
    if depth <= top:
        return 170.0
    return 170.0 - (depth - top) / (bottom - top) * (170.0 - lowest)


def squat_frames(
    depths: Sequence[float],
    *,
    lowest_knee: float = 75.0,
    spine: float = 180.0,
    step_ms: float = 100.0,
    start_ms: float = 0.0,
) -> List[Frame]:
    bottom = max(depths)
    return [
        build_frame(
            start_ms + i * step_ms,
            depth=d,
            knee=knee_for_depth(d, lowest=lowest_knee, bottom=bottom),
            spine=spine,
        )
        for i, d in enumerate(depths)
    ]


@pytest.fixture
def make_frame():
    return build_frame


@pytest.fixture
def make_squat_frames():
    return squat_frames


@pytest.fixture
def rep_depths():
    return squat_rep_depths
