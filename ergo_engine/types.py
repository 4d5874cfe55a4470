"""
Shared value types for the ergonomics engine.
Per-frame readings are immutable; LiveState is the one mutable snapshot.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence


# ============================================================================
# KEYPOINTS
# ============================================================================

class KeypointIndex:
    """Body joint indices (MoveNet / COCO 17-keypoint order)"""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16

    COUNT = 17


@dataclass(frozen=True)
class Keypoint:
    """A single named 2D joint estimate, coordinates normalized to [0, 1]"""
    x: float
    y: float
    confidence: float
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Keypoint":
        # "score" is what most pose models call it
        confidence = data.get("confidence", data.get("score", 0.0))
        return cls(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            confidence=float(confidence or 0.0),
            name=data.get("name"),
        )


def as_keypoints(raw: Sequence[Any]) -> list:
    """Accept Keypoint objects or plain dicts and return a list of Keypoint."""
    return [kp if isinstance(kp, Keypoint) else Keypoint.from_dict(kp) for kp in raw]


# ============================================================================
# ENUMS
# ============================================================================

class PostureState(str, Enum):
    GOOD = "GOOD"
    OK = "OK"
    BAD = "BAD"


class EyeState(str, Enum):
    OK = "OK"
    STRAINED = "STRAINED"


class PostureZone(str, Enum):
    """Mutually exclusive posture zones, priority distance > forward > tilt"""
    CENTER = "CENTER"
    LEFT_TILT = "LEFT_TILT"
    RIGHT_TILT = "RIGHT_TILT"
    FORWARD = "FORWARD"
    TOO_CLOSE = "TOO_CLOSE"
    TOO_FAR = "TOO_FAR"


class GazeDirection(str, Enum):
    CENTER = "CENTER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class MetricType(str, Enum):
    """Metric types written to the store on flush"""
    POSTURE = "POSTURE"
    EYE = "EYE"
    BLINK = "BLINK"
    PRESENCE = "PRESENCE"
    ZONE = "ZONE"
    MONITOR_GAZE = "MONITOR_GAZE"


# ============================================================================
# PER-FRAME READINGS
# ============================================================================

@dataclass(frozen=True)
class PostureReading:
    score: float
    state: PostureState
    forward_angle_deg: float
    # False for the insufficient-data sentinel (score 0, state OK)
    sufficient: bool = True


@dataclass(frozen=True)
class ZoneReading:
    zone: PostureZone
    forward_angle_deg: float
    tilt_deg: float
    distance_cm: Optional[float]


@dataclass(frozen=True)
class GazeReading:
    direction: GazeDirection
    confidence: float
    yaw_deg: float


@dataclass(frozen=True)
class EyeReading:
    ear: float
    state: EyeState
    strain_score: float
    sufficient: bool = True


@dataclass(frozen=True)
class CalibrationSample:
    shoulder_angle: float
    neck_angle: float
    head_tilt: float
    distance_cm: float


# ============================================================================
# AGGREGATED STATE
# ============================================================================

@dataclass(frozen=True)
class HistorySample:
    """One second of averaged readings"""
    timestamp: float
    posture_avg: float
    eye_avg: float


@dataclass(frozen=True)
class CalibrationBaseline:
    timestamp: float
    shoulder_angle: float
    neck_angle: float
    head_tilt: float
    distance_cm: float
    sample_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalibrationBaseline":
        return cls(
            timestamp=float(data["timestamp"]),
            shoulder_angle=float(data["shoulder_angle"]),
            neck_angle=float(data["neck_angle"]),
            head_tilt=float(data["head_tilt"]),
            distance_cm=float(data["distance_cm"]),
            sample_count=int(data["sample_count"]),
        )


@dataclass
class LiveState:
    """Externally visible snapshot, overwritten every frame"""
    timestamp: float = field(default_factory=time.time)

    posture_state: PostureState = PostureState.OK
    posture_score: float = 1.0
    forward_angle_deg: float = 0.0
    posture_zone: Optional[PostureZone] = None
    distance_cm_estimate: Optional[float] = None

    eye_state: EyeState = EyeState.OK
    eye_strain_score: float = 0.0
    ear: float = 0.0
    blink_rate: int = 0

    gaze_direction: GazeDirection = GazeDirection.CENTER
    gaze_confidence: float = 0.0

    is_user_present: bool = False
    is_calibrating: bool = False

    def copy(self) -> "LiveState":
        return LiveState(**self.__dict__)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "timestamp": self.timestamp,
            "posture_state": self.posture_state.value,
            "posture_score": round(self.posture_score, 4),
            "forward_angle_deg": round(self.forward_angle_deg, 2),
            "posture_zone": self.posture_zone.value if self.posture_zone else None,
            "distance_cm_estimate": (
                round(self.distance_cm_estimate, 1)
                if self.distance_cm_estimate is not None else None
            ),
            "eye_state": self.eye_state.value,
            "eye_strain_score": round(self.eye_strain_score, 4),
            "ear": round(self.ear, 4),
            "blink_rate": self.blink_rate,
            "gaze_direction": self.gaze_direction.value,
            "gaze_confidence": round(self.gaze_confidence, 2),
            "is_user_present": self.is_user_present,
            "is_calibrating": self.is_calibrating,
        }


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))
