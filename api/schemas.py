from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class KeypointIn(BaseModel):
    x: float
    y: float
    confidence: float = Field(ge=0.0, le=1.0)
    z: float = 0.0


class FrameIn(BaseModel):
    timestamp_ms: float = Field(allow_inf_nan=False)
    # One entry per landmark index of the layout; null where the model returned nothing
    keypoints: List[Optional[KeypointIn]]
    detection_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class LoadIn(BaseModel):
    weight: Optional[float] = Field(default=None, ge=0.0)
    reps: int = Field(0, ge=0)
    sets: int = Field(1, ge=1)


class AnalyzeRequest(BaseModel):
    exercise: str = "squat"
    layout: str = Field("blazepose", description="blazepose | coco17")
    frames: List[FrameIn] = Field(default_factory=list)
    load: Optional[LoadIn] = None


class RepOut(BaseModel):
    rep_id: int
    quality: str
    form_score: float
    duration_ms: float
    timestamp_ms: float
    depth: float
    symmetry: float
    range: float
    issues: List[str] = Field(default_factory=list)


class PhaseChangeOut(BaseModel):
    timestamp_ms: float
    from_phase: str = Field(alias="from")
    to: str
    confidence: float

    model_config = {"populate_by_name": True}


class RiskPatternOut(BaseModel):
    id: str
    category: str
    severity: str
    body_parts: List[str]
    description: str
    threshold: float
    current_value: float
    trend: str


class RiskOut(BaseModel):
    overall_risk: float = Field(ge=0.0, le=100.0)
    risk_level: str
    requires_stop: bool
    patterns: List[RiskPatternOut] = Field(default_factory=list)
    body_part_risks: Dict[str, float] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)


class FrameCounts(BaseModel):
    total: int = Field(0, ge=0)
    analyzed: int = Field(0, ge=0)
    skipped: Dict[str, int] = Field(default_factory=dict)


class Summary(BaseModel):
    total_reps: int = Field(0, ge=0)
    good_form_reps: int = Field(0, ge=0)
    average_quality: float = Field(0.0, ge=0.0, le=4.0)
    quality: Dict[str, int] = Field(default_factory=dict)
    common_issues: List[str] = Field(default_factory=list)
    worst_risk: Optional[RiskOut] = None
    emergency_stop: bool = False
    frames: FrameCounts


class AnalyzeResponse(BaseModel):
    session_id: str
    exercise: str
    summary: Summary
    reps: List[RepOut]
    phase_changes: List[PhaseChangeOut]


class ExerciseInfo(BaseModel):
    name: str
    primary_joint: str
    top_angle: float
    bottom_angle: float
    top_depth: float
    bottom_depth: float
    symmetry_joints: List[str]
    required_angles: List[str]
    form_rules: List[str] = Field(description="problem labels checked for this exercise")
