"""
Blink / Strain Debouncer
Turns per-frame EAR values into discrete blink events, a blink rate and a
separately smoothed eye-strain score.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Tuple

from .config import EngineConfig
from .landmarks import instant_strain
from .types import EyeReading, EyeState, clamp01

logger = logging.getLogger("ergo.engine.blink")


class BlinkPhase(str, Enum):
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    OPENING = "OPENING"


def blink_transition(
    phase: BlinkPhase,
    ear: float,
    close_threshold: float = 0.24,
    open_threshold: float = 0.28,
) -> Tuple[BlinkPhase, bool]:
    """
    Advance the blink FSM by one smoothed EAR sample.
    Returns (next_phase, blinked). A blink is emitted only on OPENING -> OPEN.
    """
    if phase is BlinkPhase.OPEN:
        if ear < close_threshold:
            return BlinkPhase.CLOSING, False
        return phase, False

    if phase is BlinkPhase.CLOSING:
        if ear < close_threshold:
            return BlinkPhase.CLOSED, False
        if ear > open_threshold:
            return BlinkPhase.OPEN, False  # false alarm
        return phase, False

    if phase is BlinkPhase.CLOSED:
        if ear > close_threshold:
            return BlinkPhase.OPENING, False
        return phase, False

    # OPENING
    if ear > open_threshold:
        return BlinkPhase.OPEN, True
    if ear < close_threshold:
        return BlinkPhase.CLOSED, False  # re-closed
    return phase, False


@dataclass(frozen=True)
class EyeUpdate:
    reading: EyeReading
    smoothed_ear: float
    blinked: bool
    blink_rate: int


class BlinkCounter:
    """Blink counting with a rolling time window"""

    def __init__(self, window_seconds: float = 60.0, min_elapsed_seconds: float = 10.0,
                 session_start: float = 0.0):
        self.window_seconds = window_seconds
        self.min_elapsed_seconds = min_elapsed_seconds
        self.session_start = session_start
        self.timestamps: Deque[float] = deque()

    def add(self, current_time: float) -> None:
        self.timestamps.append(current_time)

    def _prune(self, current_time: float) -> None:
        while self.timestamps and (current_time - self.timestamps[0]) >= self.window_seconds:
            self.timestamps.popleft()

    def rate(self, current_time: float) -> int:
        """Blinks per minute; extrapolated during the first window, 0 while too early."""
        self._prune(current_time)
        count = len(self.timestamps)
        elapsed = current_time - self.session_start

        if elapsed < self.window_seconds:
            if elapsed < self.min_elapsed_seconds:
                return 0
            return int(round(count / elapsed * 60.0))
        return count


class EyeDebouncer:
    """Per-session eye signal filter: EAR smoothing, blink FSM, strain buffer"""

    def __init__(self, config: EngineConfig, session_start: float):
        self.config = config
        self.phase = BlinkPhase.OPEN
        self._ear_buffer: Deque[float] = deque(maxlen=config.EAR_SMOOTHING_FRAMES)
        self._strain_buffer: Deque[float] = deque(maxlen=config.STRAIN_BUFFER_SIZE)
        self.blink_counter = BlinkCounter(
            window_seconds=config.BLINK_WINDOW_SECONDS,
            min_elapsed_seconds=config.BLINK_MIN_ELAPSED_SECONDS,
            session_start=session_start,
        )

    def smooth(self, ear: float) -> float:
        self._ear_buffer.append(ear)
        return sum(self._ear_buffer) / len(self._ear_buffer)

    def update(self, ear: float, current_time: float) -> EyeUpdate:
        smoothed = self.smooth(ear)

        self.phase, blinked = blink_transition(
            self.phase,
            smoothed,
            close_threshold=self.config.EAR_BLINK_THRESHOLD,
            open_threshold=self.config.EAR_OPEN_THRESHOLD,
        )
        if blinked:
            self.blink_counter.add(current_time)
            logger.debug("Blink detected (smoothed EAR %.3f)", smoothed)

        self._strain_buffer.append(instant_strain(smoothed, self.config))
        strain = clamp01(sum(self._strain_buffer) / len(self._strain_buffer))
        state = EyeState.STRAINED if strain > self.config.STRAIN_STATE_THRESHOLD else EyeState.OK

        return EyeUpdate(
            reading=EyeReading(ear=smoothed, state=state, strain_score=strain),
            smoothed_ear=smoothed,
            blinked=blinked,
            blink_rate=self.blink_counter.rate(current_time),
        )

    def blink_rate(self, current_time: float) -> int:
        return self.blink_counter.rate(current_time)
