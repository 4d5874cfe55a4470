"""
Temporal Aggregator
Maintains the rolling horizons fed by per-frame readings:

  * presence        - last detection timestamp, 5 s timeout
  * 1 s history     - per-second averages, bounded to 15 minutes
  * 5 min window    - notification slice with a coverage requirement
  * flush buckets   - 60 s accumulations handed to the store, then reset

It also hosts the calibration capture and owns the LiveState snapshot.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from .config import EngineConfig
from .scheduling import TaskScheduler
from .store import MetricStore, fire_and_forget, read_setting
from .types import (
    CalibrationBaseline,
    CalibrationSample,
    EyeReading,
    GazeReading,
    HistorySample,
    LiveState,
    MetricType,
    PostureReading,
    ZoneReading,
)

logger = logging.getLogger("ergo.engine.aggregator")

BASELINE_SETTING_KEY = "postureBaseline"


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass
class FlushBucket:
    """Posture / eye / blink / presence accumulation between flushes"""
    posture: List[float] = field(default_factory=list)
    eye: List[float] = field(default_factory=list)
    blink_count: int = 0
    seen: bool = False

    def reset(self) -> None:
        self.posture = []
        self.eye = []
        self.blink_count = 0
        self.seen = False


@dataclass
class DistributionBucket:
    """Categorical counts between flushes (zones, gaze directions)"""
    counts: Counter = field(default_factory=Counter)
    switches: int = 0
    last_key: Optional[str] = None

    def add(self, key: str) -> None:
        if self.last_key is not None and key != self.last_key:
            self.switches += 1
        self.last_key = key
        self.counts[key] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def reset(self) -> None:
        # last_key survives so a switch across the flush boundary still counts
        self.counts = Counter()
        self.switches = 0


@dataclass
class CalibrationSession:
    started_at: float
    samples: List[CalibrationSample] = field(default_factory=list)


class TemporalAggregator:
    def __init__(self, config: EngineConfig, store: Optional[MetricStore], now: float):
        self.config = config
        self.store = store
        self.live = LiveState(timestamp=now)

        # Presence
        self.last_detection_time: Optional[float] = None

        # Per-second history
        self._second_posture: List[float] = []
        self._second_eye: List[float] = []
        self._last_second = now
        self.history: Deque[HistorySample] = deque(maxlen=config.HISTORY_MAX_SECONDS)

        # Flush buckets
        self.bucket = FlushBucket()
        self.zones = DistributionBucket()
        self.gaze = DistributionBucket()

        self.tasks = TaskScheduler()
        self.tasks.add("flush_metrics", config.FLUSH_INTERVAL_SECONDS, self.flush_metrics, now)
        self.tasks.add("flush_zones", config.DISTRIBUTION_FLUSH_INTERVAL_SECONDS, self.flush_zones, now)
        self.tasks.add("flush_gaze", config.DISTRIBUTION_FLUSH_INTERVAL_SECONDS, self.flush_gaze, now)

        # Calibration
        self.calibration: Optional[CalibrationSession] = None
        self.baseline: Optional[CalibrationBaseline] = self._load_baseline()

    # ──────────────────────────────────────────────────────
    # Per-frame recording
    # ──────────────────────────────────────────────────────

    def record_posture(
        self,
        reading: PostureReading,
        zone: Optional[ZoneReading],
        gaze: Optional[GazeReading],
        now: float,
    ) -> None:
        if not reading.sufficient:
            return

        self.live.posture_score = reading.score
        self.live.posture_state = reading.state
        self.live.forward_angle_deg = reading.forward_angle_deg

        self.bucket.posture.append(reading.score)
        self._second_posture.append(reading.score)
        self._mark_detection(now)

        if zone is not None:
            self.live.posture_zone = zone.zone
            self.live.distance_cm_estimate = zone.distance_cm
            self.zones.add(zone.zone.value)

        if gaze is not None:
            self.live.gaze_direction = gaze.direction
            self.live.gaze_confidence = gaze.confidence
            if gaze.confidence > 0:
                self.gaze.add(gaze.direction.value)

    def record_eyes(self, reading: EyeReading, blinked: bool, blink_rate: int, now: float) -> None:
        self.live.eye_state = reading.state
        self.live.eye_strain_score = reading.strain_score
        self.live.ear = reading.ear
        self.live.blink_rate = blink_rate

        self.bucket.eye.append(reading.strain_score)
        if blinked:
            self.bucket.blink_count += 1
        self._second_eye.append(reading.strain_score)
        self._mark_detection(now)

    def _mark_detection(self, now: float) -> None:
        self.last_detection_time = now
        self.bucket.seen = True

    # ──────────────────────────────────────────────────────
    # Presence
    # ──────────────────────────────────────────────────────

    def is_present(self, now: float) -> bool:
        if self.last_detection_time is None:
            return False
        return (now - self.last_detection_time) < self.config.PRESENCE_TIMEOUT_SECONDS

    def refresh_presence(self, now: float) -> bool:
        present = self.is_present(now)
        self.live.is_user_present = present
        self.live.timestamp = now
        return present

    # ──────────────────────────────────────────────────────
    # Per-second history
    # ──────────────────────────────────────────────────────

    def roll_second(self, now: float) -> Optional[HistorySample]:
        """Close the current second if it has elapsed. Seconds with no posture are skipped."""
        if now - self._last_second < 1.0:
            return None

        sample = None
        if self._second_posture:
            sample = HistorySample(
                timestamp=now,
                posture_avg=_mean(self._second_posture),
                eye_avg=_mean(self._second_eye),
            )
            self.history.append(sample)

        cutoff = now - self.config.HISTORY_MAX_SECONDS
        while self.history and self.history[0].timestamp <= cutoff:
            self.history.popleft()

        self._second_posture = []
        self._second_eye = []
        self._last_second = now
        return sample

    def window(self, now: float, seconds: Optional[float] = None) -> List[HistorySample]:
        seconds = seconds if seconds is not None else self.config.NOTIFICATION_WINDOW_SECONDS
        cutoff = now - seconds
        return [h for h in self.history if h.timestamp > cutoff]

    def window_averages(self, now: float) -> Optional[Tuple[float, float]]:
        """(posture_avg, eye_avg) over the notification window, or None if coverage is too thin."""
        samples = self.window(now)
        required = self.config.NOTIFICATION_WINDOW_SECONDS * self.config.NOTIFICATION_MIN_COVERAGE
        if len(samples) < required:
            return None
        posture = _mean([h.posture_avg for h in samples])
        eye = _mean([h.eye_avg for h in samples])
        return posture, eye

    # ──────────────────────────────────────────────────────
    # Periodic flush
    # ──────────────────────────────────────────────────────

    def tick(self, now: float) -> List[str]:
        fired = self.tasks.tick(now)
        if self.calibration is not None and now - self.calibration.started_at >= self.config.CALIBRATION_SECONDS:
            self._complete_calibration(now)
        return fired

    def _append(self, metric_type: MetricType, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.store is None:
            return
        fire_and_forget(
            self.store.append, metric_type.value, value, metadata or {},
            description=f"append {metric_type.value}",
        )

    def flush_metrics(self, now: float) -> None:
        bucket = self.bucket
        avg_posture = _mean(bucket.posture)
        avg_eye = _mean(bucket.eye)

        if bucket.posture:
            self._append(MetricType.POSTURE, avg_posture, {"samples": len(bucket.posture)})
        if bucket.eye:
            self._append(MetricType.EYE, avg_eye, {"samples": len(bucket.eye)})

        self._append(MetricType.PRESENCE, 1.0 if bucket.seen else 0.0)

        present = self.is_present(now)
        if present:
            self._append(MetricType.BLINK, float(bucket.blink_count))

        logger.info(
            f"Flushed metrics: posture={avg_posture:.2f}, eye={avg_eye:.2f}, "
            f"blinks={bucket.blink_count}, present={present}"
        )
        bucket.reset()

    def flush_zones(self, now: float) -> None:
        if self.zones.total:
            self._append(MetricType.ZONE, float(self.zones.total), {"counts": dict(self.zones.counts)})
        self.zones.reset()

    def flush_gaze(self, now: float) -> None:
        if self.gaze.total:
            self._append(
                MetricType.MONITOR_GAZE,
                float(self.gaze.total),
                {"counts": dict(self.gaze.counts), "switches": self.gaze.switches},
            )
        self.gaze.reset()

    # ──────────────────────────────────────────────────────
    # Calibration
    # ──────────────────────────────────────────────────────

    @property
    def is_calibrating(self) -> bool:
        return self.calibration is not None

    def start_calibration(self, now: float) -> None:
        if self.calibration is not None:
            logger.info("Calibration restarted, discarding previous capture")
        self.calibration = CalibrationSession(started_at=now)
        self.live.is_calibrating = True
        logger.info("Calibration started")

    def cancel_calibration(self) -> bool:
        if self.calibration is None:
            return False
        logger.info(f"Calibration cancelled ({len(self.calibration.samples)} samples discarded)")
        self.calibration = None
        self.live.is_calibrating = False
        return True

    def record_calibration(self, sample: Optional[CalibrationSample]) -> None:
        if self.calibration is not None and sample is not None:
            self.calibration.samples.append(sample)

    def calibration_status(self, now: float) -> Dict[str, Any]:
        if self.calibration is None:
            progress, samples = 0.0, 0
        else:
            elapsed = now - self.calibration.started_at
            progress = min(1.0, elapsed / self.config.CALIBRATION_SECONDS)
            samples = len(self.calibration.samples)
        return {
            "is_calibrating": self.calibration is not None,
            "progress": round(progress, 3),
            "samples": samples,
            "baseline": self.baseline.to_dict() if self.baseline else None,
        }

    def _complete_calibration(self, now: float) -> Optional[CalibrationBaseline]:
        session = self.calibration
        self.calibration = None
        self.live.is_calibrating = False

        samples = session.samples
        if len(samples) < self.config.CALIBRATION_MIN_SAMPLES:
            logger.warning(
                f"Calibration discarded: {len(samples)} samples "
                f"(need {self.config.CALIBRATION_MIN_SAMPLES})"
            )
            return None

        baseline = CalibrationBaseline(
            timestamp=now,
            shoulder_angle=_mean([s.shoulder_angle for s in samples]),
            neck_angle=_mean([s.neck_angle for s in samples]),
            head_tilt=_mean([s.head_tilt for s in samples]),
            distance_cm=_mean([s.distance_cm for s in samples]),
            sample_count=len(samples),
        )
        self.baseline = baseline
        if self.store is not None:
            fire_and_forget(
                self.store.set_setting, BASELINE_SETTING_KEY, baseline.to_dict(),
                description="save posture baseline",
            )
        logger.info(
            f"Calibration complete: neck={baseline.neck_angle:.1f}, "
            f"distance={baseline.distance_cm:.0f}cm, samples={baseline.sample_count}"
        )
        return baseline

    def _load_baseline(self) -> Optional[CalibrationBaseline]:
        data = read_setting(self.store, BASELINE_SETTING_KEY)
        if not data:
            return None
        try:
            return CalibrationBaseline.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed posture baseline: {e}")
            return None
