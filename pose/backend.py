from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .landmarks import BLAZEPOSE, COCO17, LandmarkLayout, posenet_part_to_joint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    confidence: float
    z: float = 0.0


@dataclass(frozen=True)
class Frame:
    """
    One timestamped set of keypoints for a single detected person.

    keypoints is indexed by the layout (None where the model returned nothing).
    """

    timestamp_ms: float
    keypoints: Tuple[Optional[Keypoint], ...]
    layout: LandmarkLayout = BLAZEPOSE
    detection_confidence: Optional[float] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def keypoint(self, joint: str) -> Optional[Keypoint]:
        if not self.layout.has(joint):
            return None
        idx = self.layout.index(joint)
        if idx >= len(self.keypoints):
            return None
        return self.keypoints[idx]

    def average_confidence(self) -> float:
        """Mean confidence over all landmark slots; missing landmarks count as 0."""
        if not self.keypoints:
            return 0.0
        total = sum(kp.confidence for kp in self.keypoints if kp is not None)
        return float(total / len(self.keypoints))

    def is_empty(self) -> bool:
        return all(kp is None for kp in self.keypoints)


def frame_from_keypoints(
    keypoints: Sequence[Optional[Keypoint]],
    timestamp_ms: float,
    *,
    layout: LandmarkLayout = BLAZEPOSE,
    detection_confidence: Optional[float] = None,
) -> Frame:
    """Pad/truncate a raw keypoint list to the layout size and wrap it in a Frame."""
    kps: List[Optional[Keypoint]] = list(keypoints[: layout.num_landmarks])
    if len(kps) < layout.num_landmarks:
        kps.extend([None] * (layout.num_landmarks - len(kps)))
    return Frame(
        timestamp_ms=float(timestamp_ms),
        keypoints=tuple(kps),
        layout=layout,
        detection_confidence=detection_confidence,
    )


def frame_from_posenet(
    pose: Mapping[str, Any],
    timestamp_ms: float,
    *,
    width: float,
    height: float,
) -> Frame:
    """
    Adapt a PoseNet single-pose result to a COCO-17 Frame.

    pose is {"score": float, "keypoints": [{"part": str, "score": float, "position": {"x", "y"}}]}
    with pixel positions; they are normalized by the given image size.
    """
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")
    raw = pose.get("keypoints")
    if not isinstance(raw, (list, tuple)):
        raise ValueError("pose must carry a 'keypoints' list")

    slots: List[Optional[Keypoint]] = [None] * COCO17.num_landmarks
    for item in raw:
        joint = posenet_part_to_joint(str(item.get("part", "")))
        if not COCO17.has(joint):
            continue
        pos = item.get("position") or {}
        x = float(pos.get("x", np.nan)) / float(width)
        y = float(pos.get("y", np.nan)) / float(height)
        conf = float(item.get("score", 0.0))
        if not (np.isfinite(x) and np.isfinite(y)):
            continue
        slots[COCO17.index(joint)] = Keypoint(
            x=max(0.0, min(1.0, x)),
            y=max(0.0, min(1.0, y)),
            confidence=max(0.0, min(1.0, conf)),
        )

    score = pose.get("score")
    return Frame(
        timestamp_ms=float(timestamp_ms),
        keypoints=tuple(slots),
        layout=COCO17,
        detection_confidence=float(score) if score is not None else None,
    )


class PoseBackend:
    """
    Single-person pose backend using MediaPipe BlazePose (Full/Heavy).

    - Keeps the model warm-loaded after construction
    - Accepts BGR frames (as from OpenCV)
    - Returns normalized keypoints in [0, 1]
    - Returns a fixed-length list (33) with None if no pose is detected
    """

    NUM_LANDMARKS = BLAZEPOSE.num_landmarks

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        pose_model: Optional[object] = None,
        smooth_landmarks: bool = True,
    ) -> None:
        """
        If pose_model is provided, it must expose a .process(np.ndarray[R,G,B]) -> result
        where result.pose_landmarks is either None or an object with .landmark list
        of 33 items, each having attributes .x, .y, .z and .visibility in [0, 1].
        """
        self._external_model = pose_model is not None
        if pose_model is not None:
            self._pose = pose_model
        else:
            try:
                import mediapipe as mp  # type: ignore
            except ImportError as exc:  # pragma: no cover - exercised only when mediapipe missing
                raise ImportError(
                    "mediapipe is required for PoseBackend. Install with `pip install formcoach[pose]`"
                ) from exc

            self._pose = mp.solutions.pose.Pose(
                model_complexity=model_complexity,
                enable_segmentation=False,
                smooth_landmarks=smooth_landmarks,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
            logger.info("BlazePose loaded (model_complexity=%s)", model_complexity)

    def close(self) -> None:
        """Release underlying resources."""
        if hasattr(self, "_pose") and not self._external_model:
            close_fn = getattr(self._pose, "close", None)
            if callable(close_fn):
                close_fn()

    def __enter__(self) -> "PoseBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def infer(self, frame_bgr: np.ndarray) -> List[Optional[Keypoint]]:
        """Run single-person pose detection on a BGR image frame.

        Returns a list of 33 items (MediaPipe BlazePose full): Keypoint or None.
        """
        if frame_bgr is None:
            raise ValueError("frame_bgr must be a numpy array")

        if not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim < 2:
            raise ValueError("frame_bgr must be an HxWxC numpy array")

        # Convert BGR (OpenCV) -> RGB without requiring cv2
        if frame_bgr.ndim == 3 and frame_bgr.shape[2] >= 3:
            frame_rgb = frame_bgr[..., ::-1]
        else:
            frame_rgb = frame_bgr

        result = self._pose.process(frame_rgb)

        if result is None or getattr(result, "pose_landmarks", None) is None:
            return [None] * self.NUM_LANDMARKS

        landmarks = getattr(result.pose_landmarks, "landmark", None)
        if landmarks is None or len(landmarks) == 0:
            return [None] * self.NUM_LANDMARKS

        keypoints: List[Optional[Keypoint]] = []
        for idx in range(self.NUM_LANDMARKS):
            if idx < len(landmarks):
                lm = landmarks[idx]
                x = float(getattr(lm, "x", 0.0))
                y = float(getattr(lm, "y", 0.0))
                z = float(getattr(lm, "z", 0.0))
                conf = float(getattr(lm, "visibility", 0.0))
                x = 0.0 if np.isnan(x) else max(0.0, min(1.0, x))
                y = 0.0 if np.isnan(y) else max(0.0, min(1.0, y))
                z = 0.0 if np.isnan(z) else z
                conf = 0.0 if np.isnan(conf) else max(0.0, min(1.0, conf))
                keypoints.append(Keypoint(x=x, y=y, confidence=conf, z=z))
            else:
                keypoints.append(None)

        return keypoints

    def infer_frame(self, frame_bgr: np.ndarray, timestamp_ms: float) -> Frame:
        """infer() wrapped into a BlazePose Frame stamped with the video timestamp."""
        kps = self.infer(frame_bgr)
        frame = frame_from_keypoints(kps, timestamp_ms, layout=BLAZEPOSE)
        if frame.is_empty():
            return frame
        return Frame(
            timestamp_ms=frame.timestamp_ms,
            keypoints=frame.keypoints,
            layout=BLAZEPOSE,
            detection_confidence=frame.average_confidence(),
        )
