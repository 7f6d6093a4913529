from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Tuple


@dataclass(frozen=True)
class LandmarkLayout:
    """
    Named view over an indexed keypoint list.

    Different pose models emit different landmark sets (BlazePose: 33, COCO/PoseNet: 17).
    Everything downstream addresses joints by name through a layout, so swapping the
    landmark source only means picking another layout.
    """

    name: str
    num_landmarks: int
    indices: Mapping[str, int] = field(default_factory=dict)

    def index(self, joint: str) -> int:
        try:
            return self.indices[joint]
        except KeyError:
            raise KeyError(f"joint '{joint}' is not part of the {self.name} layout") from None

    def has(self, joint: str) -> bool:
        return joint in self.indices


# MediaPipe BlazePose (33 landmarks), subset used by the analysis
BLAZEPOSE = LandmarkLayout(
    name="blazepose",
    num_landmarks=33,
    indices={
        "nose": 0,
        "left_eye": 2,
        "right_eye": 5,
        "left_ear": 7,
        "right_ear": 8,
        "left_shoulder": 11,
        "right_shoulder": 12,
        "left_elbow": 13,
        "right_elbow": 14,
        "left_wrist": 15,
        "right_wrist": 16,
        "left_hip": 23,
        "right_hip": 24,
        "left_knee": 25,
        "right_knee": 26,
        "left_ankle": 27,
        "right_ankle": 28,
        "left_heel": 29,
        "right_heel": 30,
        "left_foot": 31,
        "right_foot": 32,
    },
)

# COCO keypoint order as produced by PoseNet / MoveNet
COCO17 = LandmarkLayout(
    name="coco17",
    num_landmarks=17,
    indices={
        "nose": 0,
        "left_eye": 1,
        "right_eye": 2,
        "left_ear": 3,
        "right_ear": 4,
        "left_shoulder": 5,
        "right_shoulder": 6,
        "left_elbow": 7,
        "right_elbow": 8,
        "left_wrist": 9,
        "right_wrist": 10,
        "left_hip": 11,
        "right_hip": 12,
        "left_knee": 13,
        "right_knee": 14,
        "left_ankle": 15,
        "right_ankle": 16,
    },
)

LAYOUTS: Dict[str, LandmarkLayout] = {BLAZEPOSE.name: BLAZEPOSE, COCO17.name: COCO17}

# PoseNet part names -> layout joint names
_POSENET_PARTS: Dict[str, str] = {
    "nose": "nose",
    "leftEye": "left_eye",
    "rightEye": "right_eye",
    "leftEar": "left_ear",
    "rightEar": "right_ear",
    "leftShoulder": "left_shoulder",
    "rightShoulder": "right_shoulder",
    "leftElbow": "left_elbow",
    "rightElbow": "right_elbow",
    "leftWrist": "left_wrist",
    "rightWrist": "right_wrist",
    "leftHip": "left_hip",
    "rightHip": "right_hip",
    "leftKnee": "left_knee",
    "rightKnee": "right_knee",
    "leftAnkle": "left_ankle",
    "rightAnkle": "right_ankle",
}

# Skeleton edges by joint name, resolved per layout when drawing
SKELETON_EDGES: Tuple[Tuple[str, str], ...] = (
    # Torso
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    # Arms
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    # Legs
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
)


def get_layout(name: str) -> LandmarkLayout:
    try:
        return LAYOUTS[name]
    except KeyError:
        raise ValueError(f"unknown landmark layout '{name}' (known: {sorted(LAYOUTS)})") from None


def posenet_part_to_joint(part: str) -> str:
    """Map a PoseNet part name (camelCase) to a layout joint name; unknown parts pass through."""
    return _POSENET_PARTS.get(part, part)
