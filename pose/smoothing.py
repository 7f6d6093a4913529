from __future__ import annotations

from typing import List, Optional

import numpy as np

from .backend import Frame, Keypoint


class EmaSmoother:
    """
    Per-joint exponential moving average (EMA) smoother for frame keypoints.

    - Maintains independent EMA state for each landmark index
    - Low-confidence or missing measurements are passed through untouched and do not
      update the state, so confidence gating downstream still sees them as invalid
    - The first valid observation of a joint initializes its EMA at the observation

    alpha=1.0 disables smoothing (output == input), which keeps threshold crossings sharp.
    """

    def __init__(
        self,
        num_landmarks: int,
        *,
        alpha: float = 0.7,
        min_confidence: float = 0.5,
    ) -> None:
        if not (0.0 < alpha <= 1.0):
            raise ValueError("alpha must be in (0, 1]")
        if num_landmarks <= 0:
            raise ValueError("num_landmarks must be positive")
        self.num_landmarks = int(num_landmarks)
        self.alpha = float(alpha)
        self.min_confidence = float(min_confidence)

        self._prev_x = np.full(self.num_landmarks, np.nan, dtype=np.float64)
        self._prev_y = np.full(self.num_landmarks, np.nan, dtype=np.float64)

    def reset(self) -> None:
        self._prev_x.fill(np.nan)
        self._prev_y.fill(np.nan)

    def update(self, frame: Frame) -> Frame:
        if len(frame.keypoints) != self.num_landmarks:
            raise ValueError("frame keypoints length does not match num_landmarks")

        smoothed: List[Optional[Keypoint]] = []
        for idx, kp in enumerate(frame.keypoints):
            if kp is None or not np.isfinite(kp.x) or not np.isfinite(kp.y) or kp.confidence < self.min_confidence:
                smoothed.append(kp)
                continue

            px = self._prev_x[idx]
            py = self._prev_y[idx]
            if np.isnan(px) or np.isnan(py):
                x_f, y_f = float(kp.x), float(kp.y)
            else:
                a = self.alpha
                x_f = a * float(kp.x) + (1.0 - a) * px
                y_f = a * float(kp.y) + (1.0 - a) * py

            self._prev_x[idx] = x_f
            self._prev_y[idx] = y_f
            smoothed.append(Keypoint(x=float(x_f), y=float(y_f), confidence=kp.confidence, z=kp.z))

        return Frame(
            timestamp_ms=frame.timestamp_ms,
            keypoints=tuple(smoothed),
            layout=frame.layout,
            detection_confidence=frame.detection_confidence,
            meta=frame.meta,
        )
