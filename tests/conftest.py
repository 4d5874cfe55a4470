import math
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from ergo_engine.landmarks import FaceLandmarks
from ergo_engine.store import MetricStore
from ergo_engine.types import Keypoint, KeypointIndex


class FakeStore(MetricStore):
    """In-memory MetricStore recording every call"""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        self.metrics: List[tuple] = []
        self.settings: Dict[str, Any] = dict(settings or {})
        self.break_records: List[Dict[str, Any]] = []

    def append(self, metric_type, value, metadata=None):
        self.metrics.append((metric_type, value, metadata or {}))

    def get_setting(self, key):
        return self.settings.get(key)

    def set_setting(self, key, value):
        self.settings[key] = value

    def append_break_record(self, record):
        self.break_records.append(dict(record))

    def get_break_history(self, days):
        return list(self.break_records)

    def of_type(self, metric_type: str) -> List[tuple]:
        return [m for m in self.metrics if m[0] == metric_type]


class FailingStore(MetricStore):
    """Every call raises, as a disconnected database would"""

    def __init__(self):
        self.calls = 0

    def _fail(self, *args, **kwargs):
        self.calls += 1
        raise RuntimeError("database is locked")

    append = _fail
    get_setting = _fail
    set_setting = _fail
    append_break_record = _fail
    get_break_history = _fail


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: List[tuple] = []
        self.fail = fail

    async def show(self, kind, title, body, silent=True):
        if self.fail:
            raise RuntimeError("notifier offline")
        self.sent.append((kind, title, body))
        return True


def make_keypoints(
    angle_deg: float = 0.0,
    confidence: float = 0.9,
    shoulder_width: float = 0.6,
    left_ear_conf: Optional[float] = None,
    right_ear_conf: Optional[float] = None,
    ear_dy: float = 0.0,
    shoulder_conf: Optional[float] = None,
) -> List[Keypoint]:
    """
    Synthetic COCO-17 skeleton whose head (ear midpoint) leans ``angle_deg``
    from vertical over the shoulder midpoint. ``ear_dy`` lowers the left ear
    (positive) to produce head tilt.
    """
    neck = 0.3
    sx, sy = 0.5, 0.7
    hx = sx + neck * math.sin(math.radians(angle_deg))
    hy = sy - neck * math.cos(math.radians(angle_deg))

    points = [(0.5, 0.5)] * KeypointIndex.COUNT
    conf = [confidence] * KeypointIndex.COUNT
    points = list(points)

    points[KeypointIndex.LEFT_SHOULDER] = (sx + shoulder_width / 2, sy)
    points[KeypointIndex.RIGHT_SHOULDER] = (sx - shoulder_width / 2, sy)
    points[KeypointIndex.LEFT_EAR] = (hx + 0.08, hy + ear_dy / 2)
    points[KeypointIndex.RIGHT_EAR] = (hx - 0.08, hy - ear_dy / 2)
    points[KeypointIndex.NOSE] = (hx, hy + 0.02)
    points[KeypointIndex.LEFT_EYE] = (hx + 0.03, hy)
    points[KeypointIndex.RIGHT_EYE] = (hx - 0.03, hy)

    if left_ear_conf is not None:
        conf[KeypointIndex.LEFT_EAR] = left_ear_conf
    if right_ear_conf is not None:
        conf[KeypointIndex.RIGHT_EAR] = right_ear_conf
    if shoulder_conf is not None:
        conf[KeypointIndex.LEFT_SHOULDER] = shoulder_conf
        conf[KeypointIndex.RIGHT_SHOULDER] = shoulder_conf

    return [Keypoint(x=x, y=y, confidence=c) for (x, y), c in zip(points, conf)]


def make_face(ear: float) -> List[float]:
    """Flat 468 x 3 face mesh where both eyes have the given aspect ratio"""
    flat = [0.0] * FaceLandmarks.FLAT_LENGTH
    width = 0.06
    half_height = ear * width / 2

    def put(idx, x, y):
        flat[idx * 3] = x
        flat[idx * 3 + 1] = y

    for indices, cx in ((FaceLandmarks.LEFT_EYE, 0.4), (FaceLandmarks.RIGHT_EYE, 0.6)):
        p1, p2, p3, p4, p5, p6 = indices
        cy = 0.4
        put(p1, cx - width / 2, cy)
        put(p4, cx + width / 2, cy)
        put(p2, cx - width / 6, cy - half_height)
        put(p6, cx - width / 6, cy + half_height)
        put(p3, cx + width / 6, cy - half_height)
        put(p5, cx + width / 6, cy + half_height)
    return flat


def at(hour: int, minute: int = 0, second: int = 0) -> float:
    """Local-time epoch seconds on a fixed weekday"""
    return datetime(2024, 3, 12, hour, minute, second).timestamp()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def failing_store():
    return FailingStore()
