"""
Ergonomics engine facade.

One explicit object owns the per-session state (debouncer, aggregator,
decision engine) and is the single per-frame entry point. Nothing here is a
module-level singleton; the host service decides how many engines exist.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .aggregator import TemporalAggregator
from .blink import EyeDebouncer
from .config import EngineConfig
from .landmarks import (
    calibration_sample,
    classify_zone,
    estimate_gaze,
    read_eyes,
    score_posture,
)
from .notifications import (
    SETTINGS_KEY as NOTIFICATION_SETTINGS_KEY,
    NotificationDecisionEngine,
    NotificationEffect,
    NotificationKind,
    NotificationSettings,
)
from .store import MetricStore, fire_and_forget, read_setting
from .types import CalibrationBaseline, LiveState, as_keypoints

logger = logging.getLogger("ergo.engine")


class ErgoEngine:
    def __init__(
        self,
        store: Optional[MetricStore] = None,
        config: Optional[EngineConfig] = None,
        notification_settings: Optional[NotificationSettings] = None,
        now: Optional[float] = None,
    ):
        now = time.time() if now is None else now
        self.config = config or EngineConfig()
        self.store = store
        self.session_start = now

        if notification_settings is None:
            notification_settings = NotificationSettings.from_dict(
                read_setting(store, NOTIFICATION_SETTINGS_KEY)
            )

        self.debouncer = EyeDebouncer(self.config, session_start=now)
        self.aggregator = TemporalAggregator(self.config, store, now)
        self.decisions = NotificationDecisionEngine(self.config, notification_settings, now)

        self._effects: List[NotificationEffect] = []
        self._last_face_time: Optional[float] = None
        self.frames_processed = 0

        logger.info("Ergo engine initialized")

    # ============================================================================
    # FRAME PATH
    # ============================================================================

    def process_frame(
        self,
        keypoints: Optional[Sequence[Any]],
        face_landmarks: Optional[Sequence[float]] = None,
        now: Optional[float] = None,
    ) -> LiveState:
        """
        Interpret one frame and return a copy of the updated LiveState.
        Either input may be missing; insufficient data never counts as presence.
        """
        now = time.time() if now is None else now
        self.frames_processed += 1
        aggregator = self.aggregator

        kps = as_keypoints(keypoints or [])
        posture = score_posture(kps, self.config)
        if posture.sufficient:
            aggregator.record_posture(
                posture,
                classify_zone(kps, self.config),
                estimate_gaze(kps, self.config),
                now,
            )
            if aggregator.is_calibrating:
                aggregator.record_calibration(calibration_sample(kps, self.config))

        eyes = read_eyes(face_landmarks, self.config)
        if eyes.sufficient:
            update = self.debouncer.update(eyes.ear, now)
            aggregator.record_eyes(update.reading, update.blinked, update.blink_rate, now)
            self._last_face_time = now

        present = aggregator.refresh_presence(now)
        aggregator.roll_second(now)

        self._effects.extend(
            self.decisions.evaluate(now, present, aggregator.window_averages(now), self._blink_rate(now))
        )
        self._run_periodic(now)
        return aggregator.live.copy()

    def tick(self, now: Optional[float] = None) -> LiveState:
        """Advance timers without a frame (presence timeout, flushes, reminders)."""
        now = time.time() if now is None else now
        self.aggregator.refresh_presence(now)
        self.aggregator.roll_second(now)
        self._run_periodic(now)
        return self.aggregator.live.copy()

    def _run_periodic(self, now: float) -> None:
        self.aggregator.tick(now)
        self._effects.extend(self.decisions.tick(now))

    def _blink_rate(self, now: float) -> Optional[float]:
        # Without a recent face the rate is unknown, not low
        if self._last_face_time is None:
            return None
        if now - self._last_face_time >= self.config.PRESENCE_TIMEOUT_SECONDS:
            return None
        return float(self.debouncer.blink_rate(now))

    def drain_effects(self) -> List[NotificationEffect]:
        effects, self._effects = self._effects, []
        return effects

    # ============================================================================
    # STATE ACCESS
    # ============================================================================

    def live_state(self) -> LiveState:
        return self.aggregator.live.copy()

    def is_present(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.aggregator.is_present(now)

    @property
    def baseline(self) -> Optional[CalibrationBaseline]:
        return self.aggregator.baseline

    # ============================================================================
    # CALIBRATION
    # ============================================================================

    def start_calibration(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = time.time() if now is None else now
        self.aggregator.start_calibration(now)
        return self.calibration_status(now)

    def cancel_calibration(self) -> bool:
        return self.aggregator.cancel_calibration()

    def calibration_status(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = time.time() if now is None else now
        return self.aggregator.calibration_status(now)

    # ============================================================================
    # NOTIFICATION SETTINGS
    # ============================================================================

    @property
    def notification_settings(self) -> NotificationSettings:
        return self.decisions.settings

    def update_notification_settings(
        self, changes: Mapping[str, Any], now: Optional[float] = None
    ) -> NotificationSettings:
        """Merge partial changes (one level deep) and apply them immediately."""
        now = time.time() if now is None else now
        merged = self.decisions.settings.to_dict()
        for key, value in changes.items():
            if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **{k: v for k, v in value.items() if v is not None}}
            elif value is not None:
                merged[key] = value

        settings = NotificationSettings.from_dict(merged)
        self.decisions.update_settings(settings, now)
        if self.store is not None:
            fire_and_forget(
                self.store.set_setting, NOTIFICATION_SETTINGS_KEY, settings.to_dict(),
                description="save notification settings",
            )
        logger.info("Notification settings updated")
        return settings

    def test_notification(self, kind: NotificationKind, now: Optional[float] = None) -> NotificationEffect:
        now = time.time() if now is None else now
        effect = self.decisions.test_notification(kind, now)
        self._effects.append(effect)
        return effect
