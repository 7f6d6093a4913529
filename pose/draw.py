from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from .backend import Frame, Keypoint
from .landmarks import SKELETON_EDGES

if TYPE_CHECKING:  # pragma: no cover
    from analysis.tracker import ExerciseTracker, FrameResult


PHASE_COLORS = {
    "ready": (200, 200, 200),
    "eccentric": (0, 200, 255),
    "bottom": (0, 0, 255),
    "concentric": (0, 255, 255),
    "top": (0, 255, 0),
}


def _project_to_px(width: int, height: int, kp: Keypoint) -> Tuple[int, int]:
    x = kp.x * (width - 1)
    y = kp.y * (height - 1)
    x = 0 if np.isnan(x) else max(0, min(width - 1, int(round(x))))
    y = 0 if np.isnan(y) else max(0, min(height - 1, int(round(y))))
    return x, y


def _score_color(score: float) -> Tuple[int, int, int]:
    if score >= 80:
        return (0, 255, 0)
    if score >= 60:
        return (0, 255, 255)
    return (0, 0, 255)


def draw_keypoints(
    frame_bgr: np.ndarray,
    frame: Frame,
    *,
    point_color: Tuple[int, int, int] = (0, 255, 255),
    line_color: Tuple[int, int, int] = (0, 255, 0),
    confidence_threshold: float = 0.3,
) -> np.ndarray:
    """Draw the frame's keypoints and skeleton edges on the image (in place) and return it.

    Does not require OpenCV at import; uses it lazily to avoid hard dependency during tests.
    """
    if not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim != 3:
        return frame_bgr

    try:
        import cv2  # type: ignore
    except ImportError:
        return frame_bgr

    height, width = frame_bgr.shape[:2]
    radius = max(2, int(round(0.004 * max(width, height))))
    thickness = max(1, int(round(0.003 * max(width, height))))

    def usable(kp: Optional[Keypoint]) -> bool:
        return kp is not None and kp.confidence >= confidence_threshold

    # Edges first so points render on top
    for a, b in SKELETON_EDGES:
        kpa, kpb = frame.keypoint(a), frame.keypoint(b)
        if usable(kpa) and usable(kpb):
            cv2.line(frame_bgr, _project_to_px(width, height, kpa), _project_to_px(width, height, kpb), line_color, thickness)

    for kp in frame.keypoints:
        if usable(kp):
            cv2.circle(frame_bgr, _project_to_px(width, height, kp), radius, point_color, -1)

    return frame_bgr


def draw_feedback(
    frame_bgr: np.ndarray,
    result: Optional["FrameResult"],
    *,
    max_corrections: int = 2,
) -> np.ndarray:
    """Overlay phase, rep count, form score, depth, symmetry and the first corrections."""
    if result is None or not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim != 3:
        return frame_bgr

    try:
        import cv2  # type: ignore
    except ImportError:
        return frame_bgr

    height, width = frame_bgr.shape[:2]
    font = cv2.FONT_HERSHEY_SIMPLEX

    # Translucent panel behind the text
    panel = frame_bgr.copy()
    cv2.rectangle(panel, (10, 10), (min(width - 1, 260), min(height - 1, 130)), (0, 0, 0), -1)
    cv2.addWeighted(panel, 0.5, frame_bgr, 0.5, 0, dst=frame_bgr)

    phase = result.phase.phase.value
    cv2.putText(frame_bgr, f"Fase: {phase.upper()}", (20, 35), font, 0.6, PHASE_COLORS.get(phase, (255, 255, 255)), 2)
    cv2.putText(frame_bgr, f"Reps: {result.reps}", (20, 60), font, 0.6, (255, 255, 255), 2)
    score = result.form.score
    cv2.putText(frame_bgr, f"Forma: {score:.0f}%", (20, 85), font, 0.6, _score_color(score), 2)
    m = result.metrics
    cv2.putText(
        frame_bgr, f"Prof: {m.depth:.0f}%  Simm: {m.symmetry:.0f}%", (20, 110), font, 0.5, (255, 255, 255), 1
    )

    for i, correction in enumerate(result.form.corrections[:max_corrections]):
        y = height - 35 + i * 20
        cv2.putText(frame_bgr, correction, (20, y), font, 0.5, (0, 165, 255), 1)

    return frame_bgr


def render_session_video(
    input_path: str,
    output_path: str,
    *,
    backend_factory,
    tracker: "ExerciseTracker",
    limit_frames: Optional[int] = None,
) -> str:
    """Run a video file through pose + tracker and write it back with the overlay.

    - backend_factory: a callable that returns a context-managed backend (e.g., PoseBackend)
    - limit_frames: if provided, stops after this many frames (useful for samples/tests)
    Returns the output path on success.
    """
    import cv2  # type: ignore

    cap = cv2.VideoCapture(input_path)
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video: {input_path}")

    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0

    fourcc = cv2.VideoWriter_fourcc(*"mp4v")
    writer = cv2.VideoWriter(output_path, fourcc, fps, (width, height))
    if not writer.isOpened():
        cap.release()
        raise RuntimeError(f"Failed to open writer: {output_path}")

    processed = 0
    try:
        with backend_factory() as backend:
            while True:
                if limit_frames is not None and processed >= limit_frames:
                    break
                ok, image = cap.read()
                if not ok:
                    break
                frame = backend.infer_frame(image, timestamp_ms=processed * 1000.0 / fps)
                result = tracker.process(frame)
                draw_keypoints(image, frame)
                draw_feedback(image, result if result is not None else tracker.last_result)
                writer.write(image)
                processed += 1
    finally:
        writer.release()
        cap.release()
    return output_path
