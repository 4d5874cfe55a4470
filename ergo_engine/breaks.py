"""
Break Scheduler
Adaptive break timing with quiet hours, snooze / skip / take outcomes and an
effectiveness score per taken break. Driven by ``tick(now)`` every 10 s;
emissions are queued as BreakEvent values for the caller to deliver.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import EngineConfig
from .store import MetricStore, fire_and_forget, read_setting
from .types import clamp01

logger = logging.getLogger("ergo.engine.breaks")

SETTINGS_KEY = "breakSettings"

# Fields whose change moves the next break time
INTERVAL_FIELDS = frozenset({"base_interval_min", "adapt_to_strain"})

COUNTDOWN_UPDATE = "countdown-update"
BREAK_DUE = "break-due"
BREAK_WARNING = "break-warning"
BREAK_RECORDED = "break-recorded"


# ============================================================================
# DATA
# ============================================================================

@dataclass(frozen=True)
class QuietHours:
    start: str  # "HH:MM"
    end: str


@dataclass
class BreakSettings:
    enabled: bool = True
    base_interval_min: float = 45.0
    break_duration_min: float = 5.0
    adapt_to_strain: bool = True
    sound_enabled: bool = True
    show_countdown: bool = True
    quiet_hours: List[QuietHours] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BreakSettings":
        settings = cls()
        if data:
            settings = settings.merged(data)
        return settings

    def merged(self, changes: Mapping[str, Any]) -> "BreakSettings":
        values = self.to_dict()
        for key, value in changes.items():
            if key in values and value is not None:
                values[key] = value
        values["quiet_hours"] = [
            q if isinstance(q, QuietHours) else QuietHours(start=q["start"], end=q["end"])
            for q in values["quiet_hours"]
        ]
        return BreakSettings(**values)


@dataclass
class BreakRecord:
    scheduled_time: float
    actual_time: Optional[float]
    duration_min: float
    was_taken: bool
    was_snoozed: bool
    effectiveness_score: float
    pre_strain: float
    post_strain: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BreakRecord":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__})


@dataclass(frozen=True)
class BreakEvent:
    name: str
    payload: Dict[str, Any]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.name, "data": self.payload, "timestamp": self.timestamp}


# ============================================================================
# PURE HELPERS
# ============================================================================

def local_hhmm(now: float) -> str:
    return datetime.fromtimestamp(now).strftime("%H:%M")


def in_quiet_hours(current: str, ranges: Iterable[QuietHours]) -> bool:
    """
    Inclusive ``HH:MM`` comparison. A range whose start is later than its end
    wraps past midnight (22:00-06:00 covers 23:30 and 05:59).
    """
    for r in ranges:
        if r.start <= r.end:
            if r.start <= current <= r.end:
                return True
        elif current >= r.start or current <= r.end:
            return True
    return False


def compute_effectiveness(
    duration_min: float,
    target_min: float,
    left_computer: bool,
    pre_strain: float,
    post_strain: float,
) -> float:
    score = 0.4  # compliance: the break was taken

    if target_min > 0:
        score += 0.3 * min(1.0, max(0.0, duration_min) / target_min)
    else:
        score += 0.3

    if left_computer:
        score += 0.2

    reduction = max(0.0, pre_strain - post_strain)
    score += 0.1 * min(1.0, reduction / 0.3)

    return clamp01(score)


# ============================================================================
# SCHEDULER
# ============================================================================

class BreakScheduler:
    def __init__(self, store: Optional[MetricStore], config: Optional[EngineConfig] = None,
                 now: float = 0.0):
        self.store = store
        self.config = config or EngineConfig()
        self.settings = self._load_settings()

        self.last_break_time = now
        self.is_user_present = False
        self.current_strain = 0.0
        self._absence_started: Optional[float] = None

        self.break_in_progress = False
        self.break_start_time: Optional[float] = None
        self._pre_break_strain = 0.0
        self._away_during_break = False

        self._warned_for: Optional[float] = None
        self._outbox: List[BreakEvent] = []
        self._now = now
        self.next_break_time = self.calculate_next_break_time(now)

    # ──────────────────────────────────────────────────────
    # Settings
    # ──────────────────────────────────────────────────────

    def _load_settings(self) -> BreakSettings:
        data = read_setting(self.store, SETTINGS_KEY)
        try:
            return BreakSettings.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed break settings: {e}")
            return BreakSettings()

    def get_settings(self) -> BreakSettings:
        return BreakSettings.from_dict(self.settings.to_dict())

    def update_settings(self, changes: Mapping[str, Any], now: float) -> BreakSettings:
        self.settings = self.settings.merged(changes)
        if self.store is not None:
            fire_and_forget(
                self.store.set_setting, SETTINGS_KEY, self.settings.to_dict(),
                description="save break settings",
            )
        if INTERVAL_FIELDS.intersection(k for k, v in changes.items() if v is not None):
            self.next_break_time = self.calculate_next_break_time(now)
            logger.info(f"Break interval recomputed after settings change: next in "
                        f"{(self.next_break_time - now) / 60:.1f} min")
        return self.get_settings()

    # ──────────────────────────────────────────────────────
    # Interval
    # ──────────────────────────────────────────────────────

    def compute_interval(self, now: float) -> float:
        """Interval in seconds until the next break, counted from the last one."""
        minutes = self.settings.base_interval_min
        if self.settings.adapt_to_strain:
            if self.current_strain > self.config.BREAK_HIGH_STRAIN:
                minutes = self.config.BREAK_HIGH_STRAIN_INTERVAL_MIN
            elif self.current_strain < self.config.BREAK_LOW_STRAIN:
                minutes = self.config.BREAK_LOW_STRAIN_INTERVAL_MIN

            if datetime.fromtimestamp(now).hour >= self.config.AFTERNOON_START_HOUR:
                minutes *= self.config.AFTERNOON_INTERVAL_FACTOR
        return minutes * 60.0

    def calculate_next_break_time(self, now: float) -> float:
        return self.last_break_time + self.compute_interval(now)

    def time_until_next_break(self, now: float) -> float:
        return max(0.0, self.next_break_time - now)

    # ──────────────────────────────────────────────────────
    # Live inputs
    # ──────────────────────────────────────────────────────

    def update_activity(self, present: bool, strain: float, now: float) -> None:
        if not present:
            if self._absence_started is None:
                self._absence_started = now
            if self.break_start_time is not None:
                self._away_during_break = True
        elif self._absence_started is not None:
            absence = now - self._absence_started
            self._absence_started = None
            if absence > self.config.MICRO_BREAK_SECONDS and self.break_start_time is None:
                # A long enough absence is a natural break; it also answers a pending prompt
                self.break_in_progress = False
                self.last_break_time = now
                self.next_break_time = self.calculate_next_break_time(now)
                logger.info(f"Absence of {absence / 60:.1f} min credited as a micro-break")

        self.is_user_present = present
        self.current_strain = clamp01(strain)

    # ──────────────────────────────────────────────────────
    # Timer
    # ──────────────────────────────────────────────────────

    def _emit(self, name: str, payload: Dict[str, Any], now: float) -> None:
        self._outbox.append(BreakEvent(name=name, payload=payload, timestamp=now))

    def drain_events(self) -> List[BreakEvent]:
        events, self._outbox = self._outbox, []
        return events

    def is_quiet_time(self, now: float) -> bool:
        if not self.settings.quiet_hours:
            return False
        return in_quiet_hours(local_hhmm(now), self.settings.quiet_hours)

    def tick(self, now: float) -> List[BreakEvent]:
        """Quiet-hours check, then due check, then countdown and warning."""
        self._now = now
        if not self.settings.enabled or self.break_in_progress:
            return self.drain_events()

        if self.is_quiet_time(now):
            self._emit(COUNTDOWN_UPDATE, {
                "time_remaining": 0,
                "next_break_time": 0,
                "is_quiet_mode": True,
            }, now)
            return self.drain_events()

        if now >= self.next_break_time and self.is_user_present:
            self.break_in_progress = True
            self._emit(BREAK_DUE, {
                "duration": self.settings.break_duration_min,
                "strain": round(self.current_strain, 3),
            }, now)
            logger.info(f"Break due (strain {self.current_strain:.2f})")
            return self.drain_events()

        remaining = self.next_break_time - now
        if self.settings.show_countdown and remaining > 0:
            self._emit(COUNTDOWN_UPDATE, {
                "time_remaining": int(remaining),
                "next_break_time": self.next_break_time,
                "is_quiet_mode": False,
            }, now)

        if (self.settings.sound_enabled
                and self.config.BREAK_WARNING_LOWER_SECONDS < remaining <= self.config.BREAK_WARNING_UPPER_SECONDS
                and self._warned_for != self.next_break_time):
            self._warned_for = self.next_break_time
            self._emit(BREAK_WARNING, {"minutes_remaining": 5}, now)

        return self.drain_events()

    # ──────────────────────────────────────────────────────
    # Outcomes
    # ──────────────────────────────────────────────────────

    def snooze(self, now: float, minutes: Optional[float] = None) -> BreakRecord:
        minutes = self.config.DEFAULT_SNOOZE_MINUTES if minutes is None else minutes
        self.break_in_progress = False
        self.next_break_time = now + minutes * 60.0
        logger.info(f"Break snoozed for {minutes:g} min")
        return self._record(BreakRecord(
            scheduled_time=now,
            actual_time=None,
            duration_min=0.0,
            was_taken=False,
            was_snoozed=True,
            effectiveness_score=0.0,
            pre_strain=self.current_strain,
            post_strain=self.current_strain,
        ), now)

    def skip(self, now: float) -> BreakRecord:
        self.break_in_progress = False
        self.last_break_time = now
        self.next_break_time = self.calculate_next_break_time(now)
        logger.info("Break skipped")
        return self._record(BreakRecord(
            scheduled_time=now,
            actual_time=None,
            duration_min=0.0,
            was_taken=False,
            was_snoozed=False,
            effectiveness_score=0.0,
            pre_strain=self.current_strain,
            post_strain=self.current_strain,
        ), now)

    def start_break(self, now: float) -> None:
        self.break_start_time = now
        self.break_in_progress = True
        self._pre_break_strain = self.current_strain
        self._away_during_break = not self.is_user_present
        logger.info("Break started")

    def end_break(self, post_strain: float, now: float) -> Optional[BreakRecord]:
        if self.break_start_time is None:
            return None

        started = self.break_start_time
        duration_min = (now - started) / 60.0
        left_computer = self._away_during_break or not self.is_user_present
        effectiveness = compute_effectiveness(
            duration_min,
            self.settings.break_duration_min,
            left_computer,
            self._pre_break_strain,
            post_strain,
        )

        record = BreakRecord(
            scheduled_time=self.next_break_time,
            actual_time=started,
            duration_min=round(duration_min, 2),
            was_taken=True,
            was_snoozed=False,
            effectiveness_score=effectiveness,
            pre_strain=self._pre_break_strain,
            post_strain=clamp01(post_strain),
        )

        self.break_in_progress = False
        self.break_start_time = None
        self._away_during_break = False
        self.last_break_time = now
        self.next_break_time = self.calculate_next_break_time(now)
        logger.info(f"Break ended after {duration_min:.1f} min (effectiveness {effectiveness:.2f})")
        return self._record(record, now)

    def _record(self, record: BreakRecord, now: float) -> BreakRecord:
        if self.store is not None:
            fire_and_forget(self.store.append_break_record, record.to_dict(), description="append break record")
        self._emit(BREAK_RECORDED, record.to_dict(), now)
        return record

    # ──────────────────────────────────────────────────────
    # History
    # ──────────────────────────────────────────────────────

    def get_break_history(self, days: int = 7) -> List[BreakRecord]:
        if self.store is None:
            return []
        try:
            rows = self.store.get_break_history(days)
        except Exception as e:
            logger.warning(f"Failed to load break history: {e}")
            return []
        return [BreakRecord.from_dict(row) for row in rows]

    def break_stats(self, days: int = 7) -> Dict[str, Any]:
        return summarize_breaks(self.get_break_history(days))


def summarize_breaks(records: List[BreakRecord]) -> Dict[str, Any]:
    taken = [r for r in records if r.was_taken]
    snoozed = sum(1 for r in records if r.was_snoozed)
    skipped = sum(1 for r in records if not r.was_taken and not r.was_snoozed)
    total = len(records)
    return {
        "total": total,
        "taken": len(taken),
        "snoozed": snoozed,
        "skipped": skipped,
        "compliance_rate": round(len(taken) / total, 3) if total else 0.0,
        "avg_effectiveness": (
            round(sum(r.effectiveness_score for r in taken) / len(taken), 3) if taken else 0.0
        ),
        "avg_duration_min": (
            round(sum(r.duration_min for r in taken) / len(taken), 2) if taken else 0.0
        ),
    }
