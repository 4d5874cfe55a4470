"""
ErgoPulse Engine Package
Turns per-frame pose keypoints and face-mesh landmarks into posture, eye
strain, blink rate, gaze and presence signals, and drives wellness
notifications plus an adaptive break scheduler.

Usage (frame loop, any landmark source):
    from ergo_engine import ErgoEngine

    engine = ErgoEngine()
    live = engine.process_frame(keypoints, face_landmarks)
    print(live.to_dict())
    for effect in engine.drain_effects():
        print(effect.title, effect.body)

Usage (break scheduler, ticked every 10 s):
    from ergo_engine import BreakScheduler

    scheduler = BreakScheduler(store=None)
    scheduler.update_activity(live.is_user_present, live.eye_strain_score, now)
    for event in scheduler.tick(now):
        print(event.to_dict())
"""

from .breaks import BreakEvent, BreakRecord, BreakScheduler, BreakSettings, QuietHours
from .config import EngineConfig
from .engine import ErgoEngine
from .notifications import NotificationEffect, NotificationKind, NotificationSettings
from .store import MetricStore
from .types import Keypoint, LiveState, MetricType

__all__ = [
    "ErgoEngine",
    "EngineConfig",
    "BreakScheduler",
    "BreakSettings",
    "BreakRecord",
    "BreakEvent",
    "QuietHours",
    "NotificationSettings",
    "NotificationEffect",
    "NotificationKind",
    "MetricStore",
    "Keypoint",
    "LiveState",
    "MetricType",
]
