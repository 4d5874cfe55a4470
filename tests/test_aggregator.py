import pytest

from conftest import FakeStore, make_keypoints
from ergo_engine.aggregator import BASELINE_SETTING_KEY, TemporalAggregator
from ergo_engine.config import EngineConfig
from ergo_engine.landmarks import calibration_sample, classify_zone, estimate_gaze, score_posture
from ergo_engine.types import EyeReading, EyeState, MetricType

CONFIG = EngineConfig()


def posture_at(aggregator, now, angle=0.0, **kwargs):
    kps = make_keypoints(angle, **kwargs)
    aggregator.record_posture(score_posture(kps), classify_zone(kps), estimate_gaze(kps), now)


def eyes_at(aggregator, now, strain=0.0, blinked=False):
    reading = EyeReading(ear=0.3, state=EyeState.OK, strain_score=strain)
    aggregator.record_eyes(reading, blinked, 12, now)


# ── Presence ─────────────────────────────────────────────

def test_presence_times_out_after_five_seconds():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    assert not agg.is_present(0.0)
    posture_at(agg, 10.0)
    assert agg.is_present(14.9)
    assert not agg.is_present(15.0)


def test_eye_detection_alone_refreshes_presence():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    eyes_at(agg, 3.0)
    assert agg.refresh_presence(4.0)
    assert agg.live.is_user_present


def test_insufficient_keypoints_do_not_refresh_presence():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    posture_at(agg, 1.0, shoulder_conf=0.0)
    assert agg.last_detection_time is None
    assert not agg.refresh_presence(1.0)


# ── Per-second history ───────────────────────────────────

def test_seconds_without_posture_are_skipped():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    eyes_at(agg, 0.5)
    assert agg.roll_second(1.0) is None
    posture_at(agg, 1.5, angle=25)
    sample = agg.roll_second(2.0)
    assert sample.posture_avg == pytest.approx(0.35)
    assert len(agg.history) == 1


def test_roll_second_waits_for_a_full_second():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    posture_at(agg, 0.2)
    assert agg.roll_second(0.5) is None
    assert agg.roll_second(1.0) is not None


def test_history_never_exceeds_900_samples():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    for t in range(1, 2001):
        posture_at(agg, float(t))
        agg.roll_second(float(t))
        assert len(agg.history) <= 900
    assert len(agg.history) == 900
    assert agg.history[0].timestamp > 2000 - 900


def test_window_requires_half_coverage():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    for t in range(1, 150):
        posture_at(agg, float(t), angle=25)
        agg.roll_second(float(t))
    assert agg.window_averages(149.0) is None

    posture_at(agg, 150.0, angle=25)
    agg.roll_second(150.0)
    posture_avg, eye_avg = agg.window_averages(150.0)
    assert posture_avg == pytest.approx(0.35)
    assert eye_avg == 0.0


# ── Flush ────────────────────────────────────────────────

def test_flush_writes_averages_presence_and_blinks():
    store = FakeStore()
    agg = TemporalAggregator(CONFIG, store, now=0.0)
    posture_at(agg, 58.0, angle=0)
    eyes_at(agg, 58.0, strain=0.5, blinked=True)
    eyes_at(agg, 59.0, strain=0.0, blinked=True)

    assert agg.tick(59.0) == []
    assert "flush_metrics" in agg.tick(60.0)

    assert store.of_type("POSTURE") == [("POSTURE", pytest.approx(1.0), {"samples": 1})]
    assert store.of_type("EYE")[0][1] == pytest.approx(0.25)
    assert store.of_type("PRESENCE")[0][1] == 1.0
    assert store.of_type("BLINK")[0][1] == 2.0
    assert agg.bucket.posture == [] and agg.bucket.blink_count == 0


def test_flush_while_absent_skips_blinks():
    store = FakeStore()
    agg = TemporalAggregator(CONFIG, store, now=0.0)
    agg.tick(60.0)
    assert store.of_type("PRESENCE")[0][1] == 0.0
    assert store.of_type("BLINK") == []
    assert store.of_type("POSTURE") == []


def test_zone_and_gaze_distributions():
    store = FakeStore()
    agg = TemporalAggregator(CONFIG, store, now=0.0)
    posture_at(agg, 1.0, angle=0)
    posture_at(agg, 2.0, angle=20)
    posture_at(agg, 3.0, angle=0, right_ear_conf=0.0)
    agg.tick(60.0)

    zone = store.of_type(MetricType.ZONE.value)[0]
    assert zone[2]["counts"] == {"CENTER": 2, "FORWARD": 1}

    gaze = store.of_type(MetricType.MONITOR_GAZE.value)[0]
    assert gaze[2]["counts"] == {"CENTER": 2, "LEFT": 1}
    assert gaze[2]["switches"] == 1


def test_failing_store_never_raises(failing_store):
    agg = TemporalAggregator(CONFIG, failing_store, now=0.0)
    posture_at(agg, 10.0)
    agg.tick(60.0)
    assert failing_store.calls > 0
    assert agg.bucket.posture == []


# ── Calibration ──────────────────────────────────────────

def run_calibration(agg, samples, start=0.0):
    agg.start_calibration(start)
    for i in range(samples):
        agg.record_calibration(calibration_sample(make_keypoints(6)))
    return agg.tick(start + CONFIG.CALIBRATION_SECONDS)


def test_calibration_commits_baseline():
    store = FakeStore()
    agg = TemporalAggregator(CONFIG, store, now=0.0)
    agg.start_calibration(0.0)
    status = agg.calibration_status(30.0)
    assert status["is_calibrating"]
    assert status["progress"] == pytest.approx(0.5)

    for _ in range(12):
        agg.record_calibration(calibration_sample(make_keypoints(6)))
    agg.tick(60.0)

    assert not agg.is_calibrating
    assert agg.baseline.sample_count == 12
    assert agg.baseline.neck_angle == pytest.approx(6.0)
    assert store.settings[BASELINE_SETTING_KEY]["sample_count"] == 12


def test_calibration_with_too_few_samples_is_discarded():
    store = FakeStore()
    agg = TemporalAggregator(CONFIG, store, now=0.0)
    run_calibration(agg, samples=5)
    assert agg.baseline is None
    assert BASELINE_SETTING_KEY not in store.settings


def test_cancel_calibration_discards_samples():
    agg = TemporalAggregator(CONFIG, None, now=0.0)
    agg.start_calibration(0.0)
    agg.record_calibration(calibration_sample(make_keypoints(0)))
    assert agg.cancel_calibration()
    assert not agg.cancel_calibration()
    agg.tick(120.0)
    assert agg.baseline is None
    assert not agg.live.is_calibrating


def test_baseline_loaded_from_store():
    first = FakeStore()
    run_calibration(TemporalAggregator(CONFIG, first, now=0.0), samples=10)
    restored = TemporalAggregator(CONFIG, FakeStore(first.settings), now=100.0)
    assert restored.baseline is not None
    assert restored.baseline.sample_count == 10
