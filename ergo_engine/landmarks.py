"""
Landmark Interpreter
Pure per-frame transforms from keypoint / face-mesh arrays to posture, zone,
gaze and eye measurements. No state is kept between frames.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import EngineConfig
from .types import (
    CalibrationSample,
    EyeReading,
    EyeState,
    GazeDirection,
    GazeReading,
    Keypoint,
    KeypointIndex,
    PostureReading,
    PostureState,
    PostureZone,
    ZoneReading,
    clamp01,
)

DEFAULT_CONFIG = EngineConfig()


# ============================================================================
# LANDMARK DEFINITIONS - FaceMesh indices (468 landmarks)
# ============================================================================

class FaceLandmarks:
    """Eye contour indices in p1..p6 order for the 6-point EAR"""
    COUNT = 468
    FLAT_LENGTH = COUNT * 3

    LEFT_EYE = (33, 160, 158, 133, 153, 144)
    RIGHT_EYE = (362, 385, 387, 263, 373, 380)


# Posture score bands: (upper angle, score at lower edge, score at upper edge)
_SCORE_BANDS: Tuple[Tuple[float, float, float], ...] = (
    (5.0, 1.00, 0.95),
    (10.0, 0.95, 0.80),
    (20.0, 0.80, 0.50),
    (30.0, 0.50, 0.20),
)


# ============================================================================
# GEOMETRY UTILITIES
# ============================================================================

class GeometryUtils:
    @staticmethod
    def midpoint(a: Keypoint, b: Keypoint) -> Tuple[float, float]:
        return ((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)


def _visible(kp: Keypoint, config: EngineConfig) -> bool:
    return kp.confidence >= config.MIN_KEYPOINT_CONFIDENCE


def _has_body(keypoints: Sequence[Keypoint], config: EngineConfig) -> bool:
    """Both shoulders and at least one ear must be visible."""
    if len(keypoints) < KeypointIndex.COUNT:
        return False
    left_sh = keypoints[KeypointIndex.LEFT_SHOULDER]
    right_sh = keypoints[KeypointIndex.RIGHT_SHOULDER]
    left_ear = keypoints[KeypointIndex.LEFT_EAR]
    right_ear = keypoints[KeypointIndex.RIGHT_EAR]
    if not (_visible(left_sh, config) and _visible(right_sh, config)):
        return False
    return _visible(left_ear, config) or _visible(right_ear, config)


def head_reference(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> Tuple[float, float]:
    """Ear midpoint, else the single visible ear, else the nose."""
    left_ear = keypoints[KeypointIndex.LEFT_EAR]
    right_ear = keypoints[KeypointIndex.RIGHT_EAR]
    nose = keypoints[KeypointIndex.NOSE]

    if _visible(left_ear, config) and _visible(right_ear, config):
        return GeometryUtils.midpoint(left_ear, right_ear)
    if _visible(left_ear, config):
        return (left_ear.x, left_ear.y)
    if _visible(right_ear, config):
        return (right_ear.x, right_ear.y)
    return (nose.x, nose.y)


def forward_angle(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """
    Angle (deg) between the vertical and the shoulder-midpoint -> head vector.
    Image y grows downwards; a head that is not above the shoulders is the
    worst case.
    """
    shoulder_x, shoulder_y = GeometryUtils.midpoint(
        keypoints[KeypointIndex.LEFT_SHOULDER], keypoints[KeypointIndex.RIGHT_SHOULDER]
    )
    head_x, head_y = head_reference(keypoints, config)
    dx = head_x - shoulder_x
    dy = head_y - shoulder_y

    if dy >= 0:
        return config.POSTURE_WORST_ANGLE
    return abs(math.degrees(math.atan2(dx, -dy)))


def score_for_angle(angle_deg: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Piecewise-linear, monotonically non-increasing map from lean angle to [0, 1]."""
    if math.isnan(angle_deg):
        return 0.0
    angle = abs(angle_deg)
    lower = 0.0
    for upper, start, end in _SCORE_BANDS:
        if angle < upper:
            fraction = (angle - lower) / (upper - lower)
            return clamp01(start + (end - start) * fraction)
        lower = upper

    # Last band runs from 0.20 at 30 deg down to 0 at the worst-case angle
    span = max(config.POSTURE_WORST_ANGLE - lower, 1e-6)
    fraction = min((angle - lower) / span, 1.0)
    return clamp01(0.20 * (1.0 - fraction))


def state_for_angle(angle_deg: float, config: EngineConfig = DEFAULT_CONFIG) -> PostureState:
    if angle_deg > config.POSTURE_BAD_ANGLE:
        return PostureState.BAD
    if angle_deg > config.POSTURE_OK_ANGLE:
        return PostureState.OK
    return PostureState.GOOD


def score_posture(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> PostureReading:
    if not _has_body(keypoints, config):
        return PostureReading(score=0.0, state=PostureState.OK, forward_angle_deg=0.0, sufficient=False)

    angle = forward_angle(keypoints, config)
    return PostureReading(
        score=score_for_angle(angle, config),
        state=state_for_angle(angle, config),
        forward_angle_deg=angle,
    )


# ============================================================================
# ZONE CLASSIFICATION
# ============================================================================

def head_tilt(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Ear-line tilt (deg). Positive when the left ear sits lower than the right."""
    left_ear = keypoints[KeypointIndex.LEFT_EAR]
    right_ear = keypoints[KeypointIndex.RIGHT_EAR]
    if not (_visible(left_ear, config) and _visible(right_ear, config)):
        return 0.0
    return math.degrees(math.atan2(left_ear.y - right_ear.y, abs(left_ear.x - right_ear.x)))


def estimate_distance_cm(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> Optional[float]:
    """Inverse shoulder-width heuristic; the focal constant is a tunable, not a camera model."""
    width = abs(keypoints[KeypointIndex.LEFT_SHOULDER].x - keypoints[KeypointIndex.RIGHT_SHOULDER].x)
    if width < 1e-6:
        return None
    return config.SHOULDER_WIDTH_CM * config.FOCAL_LENGTH_NORM / width


def classify_zone(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> Optional[ZoneReading]:
    if not _has_body(keypoints, config):
        return None

    angle = forward_angle(keypoints, config)
    tilt = head_tilt(keypoints, config)
    distance = estimate_distance_cm(keypoints, config)

    if distance is not None and distance < config.ZONE_MIN_DISTANCE_CM:
        zone = PostureZone.TOO_CLOSE
    elif distance is not None and distance > config.ZONE_MAX_DISTANCE_CM:
        zone = PostureZone.TOO_FAR
    elif angle > config.ZONE_FORWARD_ANGLE:
        zone = PostureZone.FORWARD
    elif abs(tilt) > config.ZONE_TILT_ANGLE:
        zone = PostureZone.LEFT_TILT if tilt > 0 else PostureZone.RIGHT_TILT
    else:
        zone = PostureZone.CENTER

    return ZoneReading(zone=zone, forward_angle_deg=angle, tilt_deg=tilt, distance_cm=distance)


# ============================================================================
# GAZE DIRECTION
# ============================================================================

def estimate_gaze(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> GazeReading:
    """
    Head yaw in image coordinates (positive = towards image right).

    A hidden ear is the strong signal: the head has turned away from it.
    With both ears visible the nose offset from the eye midpoint refines it.
    """
    if len(keypoints) < KeypointIndex.COUNT:
        return GazeReading(GazeDirection.CENTER, 0.0, 0.0)

    left_ear = _visible(keypoints[KeypointIndex.LEFT_EAR], config)
    right_ear = _visible(keypoints[KeypointIndex.RIGHT_EAR], config)
    nose = keypoints[KeypointIndex.NOSE]
    left_eye = keypoints[KeypointIndex.LEFT_EYE]
    right_eye = keypoints[KeypointIndex.RIGHT_EYE]

    if left_ear != right_ear:
        yaw = config.GAZE_EAR_TURN_YAW if right_ear else -config.GAZE_EAR_TURN_YAW
        confidence = config.GAZE_EAR_TURN_CONFIDENCE
    elif _visible(nose, config) and _visible(left_eye, config) and _visible(right_eye, config):
        eye_mid_x, _ = GeometryUtils.midpoint(left_eye, right_eye)
        yaw = (nose.x - eye_mid_x) * config.GAZE_NOSE_OFFSET_SCALE
        confidence = min(nose.confidence, left_eye.confidence, right_eye.confidence)
    else:
        return GazeReading(GazeDirection.CENTER, 0.0, 0.0)

    if yaw > config.GAZE_YAW_THRESHOLD:
        direction = GazeDirection.RIGHT
    elif yaw < -config.GAZE_YAW_THRESHOLD:
        direction = GazeDirection.LEFT
    else:
        direction = GazeDirection.CENTER

    return GazeReading(direction=direction, confidence=clamp01(confidence), yaw_deg=yaw)


# ============================================================================
# EYE ASPECT RATIO
# ============================================================================

def eye_aspect_ratio(points: np.ndarray, indices: Sequence[int]) -> float:
    """EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4|) over (x, y)."""
    p1, p2, p3, p4, p5, p6 = (points[idx, :2] for idx in indices)
    vertical = np.linalg.norm(p2 - p6) + np.linalg.norm(p3 - p5)
    horizontal = 2.0 * np.linalg.norm(p1 - p4)
    return float(vertical / horizontal) if horizontal > 0 else 0.0


def instant_strain(ear: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    if ear < config.STRAIN_HIGH_EAR:
        return 1.0
    if ear < config.STRAIN_WARN_EAR:
        return 0.5
    return 0.0


def read_eyes(face_landmarks: Sequence[float], config: EngineConfig = DEFAULT_CONFIG) -> EyeReading:
    if face_landmarks is None or len(face_landmarks) < FaceLandmarks.FLAT_LENGTH:
        return EyeReading(ear=0.0, state=EyeState.OK, strain_score=0.0, sufficient=False)

    points = np.asarray(face_landmarks, dtype=np.float64)[:FaceLandmarks.FLAT_LENGTH]
    points = points.reshape(FaceLandmarks.COUNT, 3)

    left = eye_aspect_ratio(points, FaceLandmarks.LEFT_EYE)
    right = eye_aspect_ratio(points, FaceLandmarks.RIGHT_EYE)
    ear = (left + right) / 2.0

    return EyeReading(ear=ear, state=EyeState.OK, strain_score=instant_strain(ear, config))


# ============================================================================
# CALIBRATION
# ============================================================================

def calibration_sample(keypoints: Sequence[Keypoint], config: EngineConfig = DEFAULT_CONFIG) -> Optional[CalibrationSample]:
    if not _has_body(keypoints, config):
        return None

    left_sh = keypoints[KeypointIndex.LEFT_SHOULDER]
    right_sh = keypoints[KeypointIndex.RIGHT_SHOULDER]
    shoulder_angle = math.degrees(math.atan2(right_sh.y - left_sh.y, abs(right_sh.x - left_sh.x)))
    distance = estimate_distance_cm(keypoints, config)

    return CalibrationSample(
        shoulder_angle=shoulder_angle,
        neck_angle=forward_angle(keypoints, config),
        head_tilt=head_tilt(keypoints, config),
        distance_cm=distance if distance is not None else 0.0,
    )
