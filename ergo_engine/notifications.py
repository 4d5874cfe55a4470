"""
Notification Decision Engine
Threshold + cooldown decisions per notification kind. Decisions are returned
as NotificationEffect values; delivering them is the caller's job.
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import EngineConfig
from .scheduling import TaskScheduler

logger = logging.getLogger("ergo.engine.notifications")

SETTINGS_KEY = "notificationSettings"
BREAK_REMINDER_TASK = "break_reminder"


class NotificationKind(str, Enum):
    POSTURE = "posture"
    EYE_STRAIN = "eye_strain"
    BLINK_RATE = "blink_rate"
    BREAK_REMINDER = "break_reminder"


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass
class ThresholdSetting:
    enabled: bool = True
    threshold: float = 0.0


@dataclass
class BreakReminderSetting:
    enabled: bool = True
    interval_minutes: float = 20.0


@dataclass
class NotificationSettings:
    posture: ThresholdSetting = field(default_factory=lambda: ThresholdSetting(True, 0.4))
    eye_strain: ThresholdSetting = field(default_factory=lambda: ThresholdSetting(True, 0.6))
    blink_rate: ThresholdSetting = field(default_factory=lambda: ThresholdSetting(True, 10.0))
    breaks: BreakReminderSetting = field(default_factory=BreakReminderSetting)
    sound: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "NotificationSettings":
        defaults = cls()
        if not data:
            return defaults

        def threshold(key: str, default: ThresholdSetting) -> ThresholdSetting:
            raw = data.get(key) or {}
            return ThresholdSetting(
                enabled=bool(raw.get("enabled", default.enabled)),
                threshold=float(raw.get("threshold", default.threshold)),
            )

        breaks = data.get("breaks") or {}
        return cls(
            posture=threshold("posture", defaults.posture),
            eye_strain=threshold("eye_strain", defaults.eye_strain),
            blink_rate=threshold("blink_rate", defaults.blink_rate),
            breaks=BreakReminderSetting(
                enabled=bool(breaks.get("enabled", defaults.breaks.enabled)),
                interval_minutes=float(breaks.get("interval_minutes", defaults.breaks.interval_minutes)),
            ),
            sound=bool(data.get("sound", defaults.sound)),
        )


@dataclass(frozen=True)
class NotificationEffect:
    """A notification the caller should deliver"""
    kind: NotificationKind
    title: str
    body: str
    timestamp: float
    silent: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "body": self.body,
            "timestamp": self.timestamp,
            "silent": self.silent,
        }


# ============================================================================
# MESSAGES
# ============================================================================

def _posture_message(score: float) -> Tuple[str, str]:
    return (
        "Posture Check",
        f"Gentle reminder to sit up straight. Your back will thank you! (Score: {score * 100:.0f}%)",
    )


def _eye_strain_message(strain: float) -> Tuple[str, str]:
    return (
        "Eye Rest Needed",
        f"Your eyes seem tired. Look away for a moment to recharge. ({strain * 100:.0f}% strain)",
    )


def _blink_message(rate: float) -> Tuple[str, str]:
    return (
        "Blink Reminder",
        f"Blinking helps keep your eyes hydrated. Try a few slow blinks now! ({rate:.0f}/min)",
    )


def _break_message() -> Tuple[str, str]:
    return ("Time to Stretch", "Great work! Take 20 seconds to look away and stretch your legs.")


_TEST_MESSAGES = {
    NotificationKind.POSTURE: ("Test: Poor Posture", "This is a test posture alert (35%)"),
    NotificationKind.EYE_STRAIN: ("Test: High Eye Strain", "This is a test eye strain alert (75%)"),
    NotificationKind.BLINK_RATE: ("Test: Low Blink Rate", "This is a test blink rate alert (8/min)"),
    NotificationKind.BREAK_REMINDER: ("Test: Break Time", "This is a test break reminder"),
}


# ============================================================================
# DECISION ENGINE
# ============================================================================

class NotificationDecisionEngine:
    def __init__(self, config: EngineConfig, settings: NotificationSettings, now: float):
        self.config = config
        self.settings = settings
        self.session_start = now
        self.cooldown = config.NOTIFICATION_COOLDOWN_SECONDS

        # Seed so nothing fires during the startup grace period
        seeded = now - self.cooldown + config.NOTIFICATION_STARTUP_GRACE_SECONDS
        self.last_sent: Dict[NotificationKind, float] = {kind: seeded for kind in NotificationKind}

        self._pending: List[NotificationEffect] = []
        self.tasks = TaskScheduler()
        self._schedule_break_reminder(now)

    # ──────────────────────────────────────────────────────
    # Cooldown table
    # ──────────────────────────────────────────────────────

    def can_send(self, kind: NotificationKind, now: float) -> bool:
        last = self.last_sent.get(kind)
        if last is None:
            return True
        return (now - last) >= self.cooldown

    def _fire(self, kind: NotificationKind, message: Tuple[str, str], now: float) -> Optional[NotificationEffect]:
        if not self.can_send(kind, now):
            logger.debug(f"Notification cooldown active for {kind.value}")
            return None
        # Stamped before delivery so a failing notifier cannot cause a storm
        self.last_sent[kind] = now
        title, body = message
        logger.info(f"Notification decided: {kind.value} - {title}")
        return NotificationEffect(kind=kind, title=title, body=body, timestamp=now, silent=not self.settings.sound)

    # ──────────────────────────────────────────────────────
    # Threshold path
    # ──────────────────────────────────────────────────────

    def evaluate(
        self,
        now: float,
        present: bool,
        window: Optional[Tuple[float, float]],
        blink_rate: Optional[float],
    ) -> List[NotificationEffect]:
        """
        Decide threshold notifications for this frame.
        ``window`` is the (posture_avg, eye_avg) pair over the notification
        window, or None when its coverage is insufficient.
        """
        if not present:
            return []
        if now - self.session_start < self.config.MIN_OBSERVATION_SECONDS:
            return []
        if window is None:
            return []

        avg_posture, avg_eye = window
        effects: List[NotificationEffect] = []

        posture = self.settings.posture
        if posture.enabled and avg_posture < posture.threshold:
            effect = self._fire(NotificationKind.POSTURE, _posture_message(avg_posture), now)
            if effect:
                effects.append(effect)

        eye = self.settings.eye_strain
        if eye.enabled and avg_eye > eye.threshold:
            effect = self._fire(NotificationKind.EYE_STRAIN, _eye_strain_message(avg_eye), now)
            if effect:
                effects.append(effect)

        blink = self.settings.blink_rate
        if blink.enabled and blink_rate is not None and blink_rate < blink.threshold:
            effect = self._fire(NotificationKind.BLINK_RATE, _blink_message(blink_rate), now)
            if effect:
                effects.append(effect)

        return effects

    # ──────────────────────────────────────────────────────
    # Fixed-interval break reminder
    # ──────────────────────────────────────────────────────

    def _schedule_break_reminder(self, now: float) -> None:
        self.tasks.remove(BREAK_REMINDER_TASK)
        if not self.settings.breaks.enabled:
            return
        interval = self.settings.breaks.interval_minutes * 60.0
        self.tasks.add(BREAK_REMINDER_TASK, interval, self._on_break_reminder, now)
        logger.info(f"Break reminder timer started: {self.settings.breaks.interval_minutes:g} minutes")

    def _on_break_reminder(self, now: float) -> None:
        if not self.settings.breaks.enabled:
            return
        effect = self._fire(NotificationKind.BREAK_REMINDER, _break_message(), now)
        if effect:
            self._pending.append(effect)

    def tick(self, now: float) -> List[NotificationEffect]:
        """Advance the reminder timer; returns reminders that became due."""
        self.tasks.tick(now)
        effects, self._pending = self._pending, []
        return effects

    # ──────────────────────────────────────────────────────
    # Settings / testing
    # ──────────────────────────────────────────────────────

    def update_settings(self, settings: NotificationSettings, now: float) -> None:
        self.settings = settings
        self._schedule_break_reminder(now)

    def test_notification(self, kind: NotificationKind, now: float) -> NotificationEffect:
        """Build a sample notification, bypassing thresholds and cooldowns."""
        title, body = _TEST_MESSAGES[kind]
        return NotificationEffect(kind=kind, title=title, body=body, timestamp=now, silent=not self.settings.sound)
