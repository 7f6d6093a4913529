#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import threading
import time
from typing import Optional

from analysis.config import TrackerSettings, available_exercises
from analysis.events import EmergencyStop, EventBus, FormIssueRaised, RepCompleted
from analysis.session import JsonSessionStore, SessionRecorder
from analysis.stream import FrameSlot
from analysis.tracker import ExerciseTracker, LoadContext
from pose.backend import PoseBackend
from pose.draw import draw_feedback, draw_keypoints, render_session_video

logger = logging.getLogger("formcoach.live")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Live rep counting and form feedback from a webcam or video file")
    p.add_argument("--exercise", default="squat", choices=available_exercises())
    p.add_argument("--camera", type=int, default=0, help="OpenCV camera index")
    p.add_argument("--video", help="Analyze a video file instead of the camera")
    p.add_argument("--output", help="With --video: write the annotated video here")
    p.add_argument("--weight", type=float, default=None, help="Load in kg, enables the overload check")
    p.add_argument("--target-reps", type=int, default=0)
    p.add_argument("--store", help="JSON file to record sets and workouts into")
    p.add_argument("--model-complexity", type=int, default=1, choices=(0, 1, 2))
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def capture_loop(cap, slot: FrameSlot, stop: threading.Event) -> None:
    """Producer: read camera frames and hand the newest one to the consumer."""
    t0 = time.monotonic()
    while not stop.is_set():
        ok, image = cap.read()
        if not ok:
            logger.warning("camera read failed; stopping capture")
            break
        slot.put((image, (time.monotonic() - t0) * 1000.0))
    slot.close()


def run_camera(args: argparse.Namespace, tracker: ExerciseTracker, recorder: Optional[SessionRecorder]) -> None:
    import cv2  # type: ignore

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        raise SystemExit(f"Failed to open camera {args.camera}")

    slot: FrameSlot = FrameSlot()
    stop = threading.Event()
    producer = threading.Thread(target=capture_loop, args=(cap, slot, stop), daemon=True)
    producer.start()

    try:
        with PoseBackend(model_complexity=args.model_complexity) as backend:
            for image, ts in slot:
                frame = backend.infer_frame(image, ts)
                result = tracker.process(frame)
                draw_keypoints(image, frame)
                draw_feedback(image, result if result is not None else tracker.last_result)
                if not tracker.active:
                    cv2.putText(image, "PAUSA", (20, 150), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 0, 255), 2)
                cv2.imshow("formcoach", image)

                key = cv2.waitKey(1) & 0xFF
                if key == ord("q"):
                    break
                if key == ord("r"):
                    if recorder is not None:
                        recorder.close_set(weight=args.weight or 0.0, target_reps=args.target_reps)
                    tracker.reset()
                if key == ord("p"):
                    if tracker.active:
                        tracker.stop()
                    else:
                        tracker.start()
    finally:
        stop.set()
        slot.close()
        producer.join(timeout=2.0)
        cap.release()
        cv2.destroyAllWindows()
        logger.info("dropped %d stale camera frames", slot.dropped)


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    bus = EventBus()
    load = LoadContext(weight=args.weight, reps=args.target_reps, sets=1)
    tracker = ExerciseTracker(args.exercise, settings=TrackerSettings.from_env(), bus=bus, load=load)

    bus.subscribe(RepCompleted, lambda e: print(f"[rep] #{e.rep.count} {e.rep.quality} ({e.rep.form_score:.0f}%)"))
    bus.subscribe(FormIssueRaised, lambda e: print(f"[form] {e.issue.problem}"))
    bus.subscribe(EmergencyStop, lambda e: print("[STOP] " + "; ".join(e.risk.recommendations)))

    recorder: Optional[SessionRecorder] = None
    if args.store:
        recorder = SessionRecorder(JsonSessionStore(args.store))
        recorder.attach(bus)
        recorder.start_workout(args.exercise)

    if args.video:
        output = args.output or "annotated.mp4"
        render_session_video(
            args.video,
            output,
            backend_factory=lambda: PoseBackend(model_complexity=args.model_complexity),
            tracker=tracker,
        )
        print(f"[video] wrote {output}")
    else:
        run_camera(args, tracker, recorder)

    print(f"[done] {tracker.reps} reps")
    if recorder is not None:
        recorder.close_set(weight=args.weight or 0.0, target_reps=args.target_reps)
        recorder.finish_workout()


if __name__ == "__main__":
    main()
