from __future__ import annotations

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from analysis.analyzer import analyze_session
from analysis.config import TrackerSettings, _get_env_int, available_exercises, get_exercise_config
from analysis.errors import ExerciseConfigError
from analysis.tracker import LoadContext
from api.schemas import AnalyzeRequest, AnalyzeResponse, ExerciseInfo
from pose.backend import Frame, Keypoint, frame_from_keypoints
from pose.landmarks import get_layout

logging.basicConfig(
    level=os.getenv("FORMCOACH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("formcoach.api")


# Request size knob (tunable via environment)
FORMCOACH_MAX_FRAMES = _get_env_int("FORMCOACH_MAX_FRAMES", 20000)


app = FastAPI(title="formcoach API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/analyze", response_model=AnalyzeResponse)
def analyze(request: AnalyzeRequest):
    if len(request.frames) > FORMCOACH_MAX_FRAMES:
        raise HTTPException(status_code=413, detail=f"Too many frames; max {FORMCOACH_MAX_FRAMES}")
    try:
        layout = get_layout(request.layout)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    frames: List[Frame] = []
    for f in request.frames:
        kps = [Keypoint(x=k.x, y=k.y, confidence=k.confidence, z=k.z) if k is not None else None for k in f.keypoints]
        frames.append(
            frame_from_keypoints(kps, f.timestamp_ms, layout=layout, detection_confidence=f.detection_confidence)
        )

    load = None
    if request.load is not None:
        load = LoadContext(weight=request.load.weight, reps=request.load.reps, sets=request.load.sets)

    try:
        result = analyze_session(frames, request.exercise, settings=TrackerSettings.from_env(), load=load)
    except ExerciseConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    summary = result["summary"]
    logger.info(
        "analyzed %s: %d frames, %d reps", result["exercise"], summary["frames"]["total"], summary["total_reps"]
    )
    return result


@app.get("/exercises", response_model=List[ExerciseInfo])
def exercises():
    out: List[ExerciseInfo] = []
    for name in available_exercises():
        cfg = get_exercise_config(name)
        t = cfg.thresholds
        out.append(
            ExerciseInfo(
                name=cfg.name,
                primary_joint=t.primary_joint,
                top_angle=t.top_angle,
                bottom_angle=t.bottom_angle,
                top_depth=t.top_depth,
                bottom_depth=t.bottom_depth,
                symmetry_joints=list(cfg.symmetry_joints),
                required_angles=list(cfg.required_angles),
                form_rules=[rule.problem for rule in cfg.form_rules],
            )
        )
    return out


@app.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    return "ok"
