from __future__ import annotations

import math
from dataclasses import dataclass, fields
from math import atan2, degrees, isfinite
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from pose.backend import Frame, Keypoint


# angle name -> (ray end A, vertex B, ray end C), by layout joint name
ANGLE_TRIPLES: Dict[str, Tuple[str, str, str]] = {
    "left_knee": ("left_hip", "left_knee", "left_ankle"),
    "right_knee": ("right_hip", "right_knee", "right_ankle"),
    "left_hip": ("left_shoulder", "left_hip", "left_knee"),
    "right_hip": ("right_shoulder", "right_hip", "right_knee"),
    "left_elbow": ("left_shoulder", "left_elbow", "left_wrist"),
    "right_elbow": ("right_shoulder", "right_elbow", "right_wrist"),
    "left_shoulder": ("left_elbow", "left_shoulder", "left_hip"),
    "right_shoulder": ("right_elbow", "right_shoulder", "right_hip"),
    "spine": ("nose", "left_hip", "left_knee"),
    "neck": ("nose", "left_shoulder", "left_hip"),
}

BILATERAL_JOINTS = ("knee", "hip", "elbow", "shoulder")


@dataclass(frozen=True)
class JointAngles:
    """Joint angles in degrees, [0, 180]. NaN where the joint was not visible."""

    left_knee: float = float("nan")
    right_knee: float = float("nan")
    left_hip: float = float("nan")
    right_hip: float = float("nan")
    left_elbow: float = float("nan")
    right_elbow: float = float("nan")
    left_shoulder: float = float("nan")
    right_shoulder: float = float("nan")
    spine: float = float("nan")
    neck: float = float("nan")

    def get(self, name: str) -> float:
        return float(getattr(self, name))

    def pair(self, joint: str) -> Tuple[float, float]:
        """(left, right) for a bilateral joint such as 'knee'."""
        if joint not in BILATERAL_JOINTS:
            raise KeyError(f"'{joint}' is not a bilateral joint")
        return self.get(f"left_{joint}"), self.get(f"right_{joint}")

    def mean(self, joint: str) -> float:
        """Mean of left/right for a bilateral joint, or the single value (spine, neck)."""
        if joint in BILATERAL_JOINTS:
            left, right = self.pair(joint)
            return float((left + right) / 2.0)
        return self.get(joint)

    def as_dict(self) -> Dict[str, float]:
        return {f.name: self.get(f.name) for f in fields(self)}


def _usable(kp: Optional[Keypoint], min_confidence: float) -> bool:
    if kp is None:
        return False
    if not (isfinite(kp.x) and isfinite(kp.y)):
        return False
    return kp.confidence >= min_confidence


def angle_at(
    a: Optional[Keypoint],
    b: Optional[Keypoint],
    c: Optional[Keypoint],
    min_confidence: float = 0.0,
) -> float:
    """
    Interior angle at B (degrees, [0, 180]) between rays B->A and B->C.

    Uses the atan2 difference; anything above 180 is reflected to 360 - angle.

    - If any point is None, non-finite or below min_confidence, returns NaN
    - If any ray has zero length, returns NaN
    """
    if not (_usable(a, min_confidence) and _usable(b, min_confidence) and _usable(c, min_confidence)):
        return float("nan")

    abx, aby = a.x - b.x, a.y - b.y
    cbx, cby = c.x - b.x, c.y - b.y
    if math.hypot(abx, aby) <= 1e-12 or math.hypot(cbx, cby) <= 1e-12:
        return float("nan")

    theta = abs(degrees(atan2(cby, cbx) - atan2(aby, abx)))
    if theta > 180.0:
        theta = 360.0 - theta
    return float(theta)


def distance(a: Optional[Keypoint], b: Optional[Keypoint]) -> float:
    if a is None or b is None:
        return float("nan")
    return float(np.hypot(b.x - a.x, b.y - a.y))


def midpoint(a: Optional[Keypoint], b: Optional[Keypoint]) -> Optional[Tuple[float, float]]:
    if a is None or b is None:
        return None
    return ((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)


def horiz_offset(knee: Optional[Keypoint], ankle: Optional[Keypoint]) -> float:
    """
    Horizontal offset between knee and ankle (signed, in normalized units): ankle.x - knee.x
    Returns np.nan if inputs invalid.
    """
    if knee is None or ankle is None:
        return float("nan")
    if not all(isfinite(v) for v in (knee.x, ankle.x)):
        return float("nan")
    return float(ankle.x - knee.x)


def compute_joint_angles(
    frame: Frame,
    *,
    required: Iterable[str] = (),
    min_confidence: float = 0.5,
) -> Optional[JointAngles]:
    """
    All joint angles for one frame.

    Fail-closed: returns None as soon as one required angle cannot be computed from
    confident keypoints. Optional angles are NaN when their keypoints are not usable.
    """
    required_set = set(required)
    unknown = required_set.difference(ANGLE_TRIPLES)
    if unknown:
        raise KeyError(f"unknown angle names: {sorted(unknown)}")

    values: Dict[str, float] = {}
    for name, (ja, jb, jc) in ANGLE_TRIPLES.items():
        theta = angle_at(frame.keypoint(ja), frame.keypoint(jb), frame.keypoint(jc), min_confidence)
        if name in required_set and not isfinite(theta):
            return None
        values[name] = theta
    return JointAngles(**values)


def hip_center_y(frame: Frame, min_confidence: float = 0.5) -> float:
    """Vertical position of the hip midpoint (image coords, larger = lower). NaN if hips not usable."""
    lh = frame.keypoint("left_hip")
    rh = frame.keypoint("right_hip")
    if not (_usable(lh, min_confidence) and _usable(rh, min_confidence)):
        return float("nan")
    return float((lh.y + rh.y) / 2.0)


def knee_valgus_deg(frame: Frame, min_confidence: float = 0.5) -> float:
    """
    Knee cave-in proxy from a frontal view, in degrees.

    Compares knee width with ankle width: when the knees sit inside the ankles, the inward
    shift per leg over the shin height is turned into an angle. 0 when knees track over or
    outside the ankles; NaN when any of the four joints is not usable.
    """
    lk, rk = frame.keypoint("left_knee"), frame.keypoint("right_knee")
    la, ra = frame.keypoint("left_ankle"), frame.keypoint("right_ankle")
    if not all(_usable(kp, min_confidence) for kp in (lk, rk, la, ra)):
        return float("nan")

    knee_width = abs(horiz_offset(lk, rk))
    ankle_width = abs(horiz_offset(la, ra))
    inward = max(0.0, (ankle_width - knee_width) / 2.0)
    shin_height = (abs(la.y - lk.y) + abs(ra.y - rk.y)) / 2.0
    if shin_height <= 1e-9:
        return float("nan")
    return float(degrees(atan2(inward, shin_height)))
