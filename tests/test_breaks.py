import pytest

from conftest import FakeStore, at
from ergo_engine.breaks import (
    BREAK_DUE,
    BREAK_RECORDED,
    BREAK_WARNING,
    COUNTDOWN_UPDATE,
    SETTINGS_KEY,
    BreakRecord,
    BreakScheduler,
    BreakSettings,
    QuietHours,
    compute_effectiveness,
    in_quiet_hours,
)
from ergo_engine.config import EngineConfig

CONFIG = EngineConfig()
MORNING = at(10)


def names(events):
    return [e.name for e in events]


def scheduler(now=MORNING, store=None, strain=0.45, present=True, **settings):
    store = store if store is not None else FakeStore()
    if settings:
        store.settings[SETTINGS_KEY] = BreakSettings().merged(settings).to_dict()
    s = BreakScheduler(store, CONFIG, now)
    s.update_activity(present, strain, now)
    # Recompute with the live strain so the interval is deterministic
    s.next_break_time = s.calculate_next_break_time(now)
    return s


# ── Pure helpers ─────────────────────────────────────────

def test_effectiveness_all_credits():
    assert compute_effectiveness(5, 5, True, 0.8, 0.3) == pytest.approx(1.0)


def test_effectiveness_partial():
    # Half the target, stayed at the desk, no strain change
    assert compute_effectiveness(2.5, 5, False, 0.5, 0.5) == pytest.approx(0.55)
    # Strain reduction credit is capped
    assert compute_effectiveness(10, 5, False, 1.0, 0.0) == pytest.approx(0.8)


def test_quiet_hours_simple_range():
    assert in_quiet_hours("14:05", [QuietHours("13:00", "15:00")])
    assert in_quiet_hours("15:00", [QuietHours("13:00", "15:00")])
    assert not in_quiet_hours("15:01", [QuietHours("13:00", "15:00")])


def test_quiet_hours_wrap_past_midnight():
    overnight = [QuietHours("22:00", "06:00")]
    assert in_quiet_hours("23:30", overnight)
    assert in_quiet_hours("05:59", overnight)
    assert not in_quiet_hours("12:00", overnight)
    assert not in_quiet_hours("14:05", [QuietHours("20:00", "06:00")])


# ── Interval ─────────────────────────────────────────────

@pytest.mark.parametrize("strain, minutes", [(0.45, 45), (0.7, 30), (0.1, 60)])
def test_interval_adapts_to_strain(strain, minutes):
    s = scheduler(strain=strain)
    assert s.compute_interval(MORNING) == minutes * 60


def test_afternoon_shortens_interval():
    s = scheduler(now=at(16), strain=0.7)
    assert s.compute_interval(at(16)) == pytest.approx(30 * 60 * 0.9)


def test_no_adaptation_when_disabled():
    s = scheduler(now=at(16), strain=0.9, adapt_to_strain=False)
    assert s.compute_interval(at(16)) == 45 * 60


# ── Tick ─────────────────────────────────────────────────

def test_countdown_then_break_due():
    s = scheduler()
    events = s.tick(MORNING + 60)
    assert names(events) == [COUNTDOWN_UPDATE]
    assert events[0].payload["time_remaining"] == 44 * 60
    assert events[0].payload["is_quiet_mode"] is False

    events = s.tick(MORNING + 45 * 60)
    assert names(events) == [BREAK_DUE]
    assert events[0].payload["duration"] == 5.0
    assert s.break_in_progress
    # Nothing more while the break is pending
    assert s.tick(MORNING + 46 * 60) == []


def test_due_break_waits_for_presence():
    s = scheduler()
    s.update_activity(False, 0.45, MORNING + 44 * 60)
    assert BREAK_DUE not in names(s.tick(MORNING + 45 * 60))
    assert not s.break_in_progress


def test_warning_fires_once_inside_window():
    s = scheduler()
    first = s.tick(MORNING + 40 * 60 + 5)  # 4m55s remaining
    assert names(first) == [COUNTDOWN_UPDATE, BREAK_WARNING]
    assert first[1].payload == {"minutes_remaining": 5}
    assert BREAK_WARNING not in names(s.tick(MORNING + 40 * 60 + 10))


def test_warning_needs_sound():
    s = scheduler(sound_enabled=False)
    assert names(s.tick(MORNING + 40 * 60 + 5)) == [COUNTDOWN_UPDATE]


def test_quiet_hours_suppress_break():
    # Break falls due at 14:50, inside the quiet range
    s = scheduler(now=at(14, 5), quiet_hours=[{"start": "13:00", "end": "15:00"}])
    events = s.tick(at(14, 59))
    assert names(events) == [COUNTDOWN_UPDATE]
    assert events[0].payload == {"time_remaining": 0, "next_break_time": 0, "is_quiet_mode": True}
    assert not s.break_in_progress


def test_disabled_scheduler_is_silent():
    s = scheduler(enabled=False)
    assert s.tick(MORNING + 50 * 60) == []


def test_countdown_hidden_when_disabled():
    s = scheduler(show_countdown=False)
    assert s.tick(MORNING + 60) == []


# ── Outcomes ─────────────────────────────────────────────

def test_snooze_pushes_next_break_and_records():
    store = FakeStore()
    s = scheduler(store=store)
    s.tick(MORNING + 45 * 60)
    record = s.snooze(MORNING + 45 * 60)

    assert s.next_break_time == MORNING + 55 * 60
    assert not s.break_in_progress
    assert record.was_snoozed and not record.was_taken
    assert record.effectiveness_score == 0.0
    assert record.pre_strain == record.post_strain == pytest.approx(0.45)
    assert store.break_records[0]["was_snoozed"] is True
    assert names(s.drain_events()) == [BREAK_RECORDED]


def test_skip_yields_zero_effectiveness_and_restarts_interval():
    store = FakeStore()
    s = scheduler(store=store)
    now = MORNING + 45 * 60
    record = s.skip(now)
    assert record.effectiveness_score == 0.0
    assert not record.was_taken and not record.was_snoozed
    assert s.next_break_time == now + 45 * 60


def test_end_break_without_start_returns_none():
    s = scheduler()
    assert s.end_break(0.2, MORNING + 60) is None


def test_taken_break_with_user_away_scores_full():
    store = FakeStore()
    s = scheduler(store=store, strain=0.8)
    start = MORNING + 30 * 60
    s.start_break(start)
    s.update_activity(False, 0.8, start + 30)
    record = s.end_break(0.3, start + 5 * 60)

    assert record.was_taken
    assert record.actual_time == start
    assert record.duration_min == pytest.approx(5.0)
    assert record.effectiveness_score == pytest.approx(1.0)
    assert not s.break_in_progress
    assert s.last_break_time == start + 5 * 60
    assert store.break_records[-1]["effectiveness_score"] == pytest.approx(1.0)


def test_break_at_desk_gets_no_away_credit():
    s = scheduler(strain=0.5)
    s.start_break(MORNING)
    record = s.end_break(0.5, MORNING + 5 * 60)
    assert record.effectiveness_score == pytest.approx(0.7)


# ── Activity ─────────────────────────────────────────────

def test_long_absence_counts_as_micro_break():
    s = scheduler()
    s.update_activity(False, 0.45, MORNING + 10 * 60)
    s.update_activity(True, 0.45, MORNING + 16 * 60)
    assert s.last_break_time == MORNING + 16 * 60
    assert s.next_break_time == MORNING + 16 * 60 + 45 * 60


def test_short_absence_is_not_a_break():
    s = scheduler()
    s.update_activity(False, 0.45, MORNING + 10 * 60)
    s.update_activity(True, 0.45, MORNING + 14 * 60)
    assert s.last_break_time == MORNING


def test_walking_away_after_break_prompt_counts_as_the_break():
    s = scheduler(now=at(9), strain=0.5)
    assert names(s.tick(at(9, 46))) == [BREAK_DUE]
    assert s.break_in_progress

    s.update_activity(False, 0.5, at(9, 47))
    s.update_activity(True, 0.5, at(10, 7))
    assert not s.break_in_progress
    assert s.last_break_time == at(10, 7)
    assert s.next_break_time == at(10, 52)

    # Countdown resumes and the next break comes due on schedule
    assert names(s.tick(at(10, 10))) == [COUNTDOWN_UPDATE]
    assert names(s.tick(at(10, 53))) == [BREAK_DUE]


def test_absence_during_started_break_is_not_a_micro_break():
    s = scheduler()
    s.start_break(MORNING)
    s.update_activity(False, 0.45, MORNING + 60)
    s.update_activity(True, 0.45, MORNING + 8 * 60)
    assert s.break_in_progress
    assert s.last_break_time == MORNING


# ── Settings ─────────────────────────────────────────────

def test_settings_persist_and_recompute_only_for_interval_fields():
    store = FakeStore()
    s = scheduler(store=store)
    before = s.next_break_time

    s.update_settings({"sound_enabled": False}, MORNING)
    assert s.next_break_time == before
    assert store.settings[SETTINGS_KEY]["sound_enabled"] is False

    s.update_settings({"base_interval_min": 50, "adapt_to_strain": False}, MORNING)
    assert s.next_break_time == MORNING + 50 * 60


def test_settings_loaded_from_store():
    store = FakeStore({SETTINGS_KEY: {"base_interval_min": 25, "quiet_hours": [{"start": "12:00", "end": "13:00"}]}})
    s = BreakScheduler(store, CONFIG, MORNING)
    assert s.settings.base_interval_min == 25
    assert s.settings.quiet_hours == [QuietHours("12:00", "13:00")]


def test_break_stats():
    store = FakeStore()
    s = scheduler(store=store)
    s.start_break(MORNING)
    s.end_break(0.4, MORNING + 5 * 60)
    s.snooze(MORNING + 50 * 60)
    s.skip(MORNING + 60 * 60)

    stats = s.break_stats(7)
    assert stats["total"] == 3
    assert stats["taken"] == 1
    assert stats["snoozed"] == 1
    assert stats["skipped"] == 1
    assert stats["compliance_rate"] == pytest.approx(0.333)
    assert [type(r) for r in s.get_break_history(7)] == [BreakRecord] * 3


def test_failing_store_is_tolerated(failing_store):
    s = BreakScheduler(failing_store, CONFIG, MORNING)
    s.update_settings({"sound_enabled": False}, MORNING)
    s.start_break(MORNING)
    assert s.end_break(0.1, MORNING + 60) is not None
    assert s.get_break_history(7) == []
