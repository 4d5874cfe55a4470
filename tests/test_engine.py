import pytest

from conftest import FakeStore, make_face, make_keypoints
from ergo_engine import ErgoEngine, NotificationKind
from ergo_engine.notifications import SETTINGS_KEY
from ergo_engine.types import EyeState, PostureState

T0 = 1_700_000_000.0


def posture_effects(engine):
    return [e for e in engine.drain_effects() if e.kind == NotificationKind.POSTURE]


def test_sustained_forward_lean_end_to_end():
    store = FakeStore()
    engine = ErgoEngine(store=store, now=T0)
    lean = make_keypoints(25)

    for i in range(1, 71):
        live = engine.process_frame(lean, None, now=T0 + i)
    assert live.posture_state == PostureState.BAD
    assert live.posture_score == pytest.approx(0.35, abs=1e-6)
    assert live.is_user_present
    assert posture_effects(engine) == []

    fired_at = []
    for i in range(71, 600):
        engine.process_frame(lean, None, now=T0 + i)
        if posture_effects(engine):
            fired_at.append(i)

    # First eligible frame: 5 minutes of session with full window coverage
    assert fired_at == [300]
    assert store.of_type("POSTURE")


def test_upright_user_gets_no_posture_notification():
    engine = ErgoEngine(store=FakeStore(), now=T0)
    upright = make_keypoints(3)
    for i in range(1, 400):
        engine.process_frame(upright, None, now=T0 + i)
    assert posture_effects(engine) == []


def test_absent_user_gets_no_notifications():
    engine = ErgoEngine(store=FakeStore(), now=T0)
    lean = make_keypoints(25)
    for i in range(1, 250):
        engine.process_frame(lean, None, now=T0 + i)
    # User leaves; empty frames keep arriving
    for i in range(250, 400):
        live = engine.process_frame([], None, now=T0 + i)
    assert not live.is_user_present
    assert posture_effects(engine) == []


def test_face_only_frames_track_eyes_and_blinks():
    engine = ErgoEngine(now=T0)
    t = T0
    for _ in range(20):
        for ear in [0.30] * 5 + [0.15] * 3 + [0.30] * 4:
            t += 0.1
            live = engine.process_frame(None, make_face(ear), now=t)
    assert live.is_user_present
    assert live.eye_state == EyeState.OK
    assert live.blink_rate > 0
    assert live.ear == pytest.approx(0.30)


def test_strained_eyes_reach_live_state():
    engine = ErgoEngine(now=T0)
    for i in range(40):
        live = engine.process_frame(None, make_face(0.18), now=T0 + i * 0.1)
    assert live.eye_state == EyeState.STRAINED
    assert live.eye_strain_score == pytest.approx(1.0)


def test_missing_face_means_no_blink_rate_alert():
    engine = ErgoEngine(now=T0)
    upright = make_keypoints(0)
    for i in range(1, 400):
        engine.process_frame(upright, None, now=T0 + i)
    assert [e for e in engine.drain_effects() if e.kind == NotificationKind.BLINK_RATE] == []


def test_live_state_is_a_copy():
    engine = ErgoEngine(now=T0)
    live = engine.process_frame(make_keypoints(25), None, now=T0 + 1)
    live.posture_score = 99.0
    assert engine.live_state().posture_score == pytest.approx(0.35)


def test_tick_times_out_presence_without_frames():
    engine = ErgoEngine(now=T0)
    engine.process_frame(make_keypoints(0), None, now=T0 + 1)
    assert engine.tick(T0 + 3).is_user_present
    assert not engine.tick(T0 + 10).is_user_present


def test_calibration_through_engine():
    store = FakeStore()
    engine = ErgoEngine(store=store, now=T0)
    status = engine.start_calibration(T0)
    assert status["is_calibrating"]

    for i in range(1, 61):
        live = engine.process_frame(make_keypoints(7), None, now=T0 + i)
    assert not live.is_calibrating
    assert engine.baseline is not None
    assert engine.baseline.neck_angle == pytest.approx(7.0)
    assert "postureBaseline" in store.settings
    assert engine.calibration_status(T0 + 61)["baseline"]["sample_count"] >= 10


def test_notification_settings_merge_and_persist():
    store = FakeStore()
    engine = ErgoEngine(store=store, now=T0)
    updated = engine.update_notification_settings({"posture": {"threshold": 0.5}, "sound": True}, now=T0)
    assert updated.posture.threshold == 0.5
    assert updated.posture.enabled is True
    assert updated.sound is True
    assert store.settings[SETTINGS_KEY]["posture"]["threshold"] == 0.5

    restored = ErgoEngine(store=store, now=T0)
    assert restored.notification_settings.posture.threshold == 0.5


def test_test_notification_goes_to_outbox():
    engine = ErgoEngine(now=T0)
    effect = engine.test_notification(NotificationKind.BLINK_RATE, now=T0)
    assert engine.drain_effects() == [effect]
    assert engine.drain_effects() == []


def test_failing_store_never_breaks_frame_path(failing_store):
    engine = ErgoEngine(store=failing_store, now=T0)
    for i in range(1, 130):
        live = engine.process_frame(make_keypoints(25), None, now=T0 + i)
    assert live.posture_state == PostureState.BAD
    assert failing_store.calls > 0


def test_keypoint_dicts_are_accepted():
    engine = ErgoEngine(now=T0)
    raw = [{"x": kp.x, "y": kp.y, "score": kp.confidence} for kp in make_keypoints(25)]
    live = engine.process_frame(raw, None, now=T0 + 1)
    assert live.posture_state == PostureState.BAD
