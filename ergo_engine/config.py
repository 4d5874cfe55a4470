"""
Engine configuration - centralized thresholds and horizons for easy tuning.

All durations are in seconds.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration for the signal-processing and scheduling engine"""

    # Keypoint visibility gate
    MIN_KEYPOINT_CONFIDENCE: float = 0.3

    # Posture state thresholds (degrees of forward lean)
    POSTURE_BAD_ANGLE: float = 20.0
    POSTURE_OK_ANGLE: float = 10.0
    POSTURE_WORST_ANGLE: float = 45.0

    # Zone classification
    ZONE_FORWARD_ANGLE: float = 15.0
    ZONE_TILT_ANGLE: float = 15.0
    ZONE_MIN_DISTANCE_CM: float = 40.0
    ZONE_MAX_DISTANCE_CM: float = 80.0
    SHOULDER_WIDTH_CM: float = 45.0
    # Focal length in normalized frame widths (~60 deg horizontal FOV webcam)
    FOCAL_LENGTH_NORM: float = 0.866

    # Gaze
    GAZE_YAW_THRESHOLD: float = 20.0
    GAZE_EAR_TURN_YAW: float = 45.0
    GAZE_EAR_TURN_CONFIDENCE: float = 0.9
    GAZE_NOSE_OFFSET_SCALE: float = 100.0

    # Blink detection (EAR hysteresis band)
    EAR_SMOOTHING_FRAMES: int = 3
    EAR_BLINK_THRESHOLD: float = 0.24
    EAR_OPEN_THRESHOLD: float = 0.28
    BLINK_WINDOW_SECONDS: float = 60.0
    BLINK_MIN_ELAPSED_SECONDS: float = 10.0

    # Eye strain
    STRAIN_WARN_EAR: float = 0.26
    STRAIN_HIGH_EAR: float = 0.22
    STRAIN_BUFFER_SIZE: int = 30
    STRAIN_STATE_THRESHOLD: float = 0.6

    # Aggregation horizons
    PRESENCE_TIMEOUT_SECONDS: float = 5.0
    HISTORY_MAX_SECONDS: int = 900
    NOTIFICATION_WINDOW_SECONDS: int = 300
    NOTIFICATION_MIN_COVERAGE: float = 0.5
    FLUSH_INTERVAL_SECONDS: float = 60.0
    DISTRIBUTION_FLUSH_INTERVAL_SECONDS: float = 60.0

    # Calibration
    CALIBRATION_SECONDS: float = 60.0
    CALIBRATION_MIN_SAMPLES: int = 10

    # Notifications
    NOTIFICATION_COOLDOWN_SECONDS: float = 300.0
    NOTIFICATION_STARTUP_GRACE_SECONDS: float = 10.0
    MIN_OBSERVATION_SECONDS: float = 300.0

    # Break scheduling
    BREAK_TICK_SECONDS: float = 10.0
    BREAK_HIGH_STRAIN: float = 0.6
    BREAK_LOW_STRAIN: float = 0.3
    BREAK_HIGH_STRAIN_INTERVAL_MIN: float = 30.0
    BREAK_LOW_STRAIN_INTERVAL_MIN: float = 60.0
    AFTERNOON_START_HOUR: int = 15
    AFTERNOON_INTERVAL_FACTOR: float = 0.9
    MICRO_BREAK_SECONDS: float = 300.0
    BREAK_WARNING_UPPER_SECONDS: float = 5 * 60.0
    BREAK_WARNING_LOWER_SECONDS: float = 4.9 * 60.0
    DEFAULT_SNOOZE_MINUTES: float = 10.0
