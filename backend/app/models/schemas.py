"""
Pydantic Schemas for API request/response validation
"""

import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ── Frame Schemas ────────────────────────────────────────
class KeypointIn(BaseModel):
    x: float
    y: float
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    name: Optional[str] = None


class FramePayload(BaseModel):
    """Landmarks computed client-side; either part may be absent"""
    keypoints: List[KeypointIn] = Field(default_factory=list)
    face_landmarks: Optional[List[float]] = None


class LiveStateResponse(BaseModel):
    timestamp: float
    posture_state: str
    posture_score: float
    forward_angle_deg: float
    posture_zone: Optional[str] = None
    distance_cm_estimate: Optional[float] = None
    eye_state: str
    eye_strain_score: float
    ear: float
    blink_rate: int
    gaze_direction: str
    gaze_confidence: float
    is_user_present: bool
    is_calibrating: bool


class FrameResponse(BaseModel):
    dropped: bool = False
    state: Optional[LiveStateResponse] = None


# ── Calibration Schemas ──────────────────────────────────
class CalibrationStatusResponse(BaseModel):
    is_calibrating: bool
    progress: float
    samples: int
    baseline: Optional[Dict[str, Any]] = None


# ── Notification Schemas ─────────────────────────────────
class ThresholdSchema(BaseModel):
    enabled: Optional[bool] = None
    threshold: Optional[float] = Field(default=None, ge=0.0)


class BreakReminderSchema(BaseModel):
    enabled: Optional[bool] = None
    interval_minutes: Optional[float] = Field(default=None, gt=0)


class NotificationSettingsUpdate(BaseModel):
    posture: Optional[ThresholdSchema] = None
    eye_strain: Optional[ThresholdSchema] = None
    blink_rate: Optional[ThresholdSchema] = None
    breaks: Optional[BreakReminderSchema] = None
    sound: Optional[bool] = None


class NotificationTestRequest(BaseModel):
    kind: str = "posture"

    @field_validator("kind")
    @classmethod
    def known_kind(cls, v: str) -> str:
        allowed = {"posture", "eye_strain", "blink_rate", "break_reminder"}
        if v not in allowed:
            raise ValueError(f"kind must be one of {sorted(allowed)}")
        return v


# ── Break Schemas ────────────────────────────────────────
class QuietHoursRange(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def hhmm(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("expected HH:MM")
        return v


class BreakSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    base_interval_min: Optional[float] = Field(default=None, gt=0)
    break_duration_min: Optional[float] = Field(default=None, gt=0)
    adapt_to_strain: Optional[bool] = None
    sound_enabled: Optional[bool] = None
    show_countdown: Optional[bool] = None
    quiet_hours: Optional[List[QuietHoursRange]] = None


class SnoozeRequest(BaseModel):
    minutes: float = Field(default=10, gt=0, le=240)


class EndBreakRequest(BaseModel):
    post_strain: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class BreakRecordResponse(BaseModel):
    scheduled_time: float
    actual_time: Optional[float] = None
    duration_min: float
    was_taken: bool
    was_snoozed: bool
    effectiveness_score: float
    pre_strain: float
    post_strain: float


class BreakStatsResponse(BaseModel):
    total: int
    taken: int
    snoozed: int
    skipped: int
    compliance_rate: float
    avg_effectiveness: float
    avg_duration_min: float
