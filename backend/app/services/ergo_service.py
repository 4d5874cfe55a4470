"""
ErgoPulse Service
Hosts one ErgoEngine and one BreakScheduler for the process. Owns the frame
gate (a frame arriving while another is in flight is dropped, never queued),
drains engine effects to the notifier, and runs the periodic break tick.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.services.notifier import Notifier, get_notifier
from app.services.websocket_manager import ws_manager
from ergo_engine import BreakScheduler, ErgoEngine, EngineConfig, LiveState, MetricStore
from ergo_engine.breaks import BREAK_DUE, BreakRecord
from ergo_engine.notifications import NotificationKind

logger = logging.getLogger("ergo.service")


class ErgoService:
    """
    Singleton service wrapping the engine for the FastAPI app.

    - Engine work runs in a thread-pool executor so it doesn't block the
      event loop; a lock serialises it with the control endpoints.
    - The break scheduler is ticked from an asyncio task, independent of
      whether frames are arriving.
    """

    _instance: Optional["ErgoService"] = None

    @classmethod
    def get_instance(cls) -> "ErgoService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(
        self,
        store: Optional[MetricStore] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        if store is None:
            from app.services.metric_store import SqlMetricStore
            store = SqlMetricStore()

        self.store = store
        self.notifier = notifier or get_notifier()
        self.config = config or settings.engine_config()
        self.clock = clock

        now = clock()
        self.engine = ErgoEngine(store=store, config=self.config, now=now)
        self.breaks = BreakScheduler(store, self.config, now)

        self._frame_gate = asyncio.Lock()
        self._engine_lock = threading.Lock()
        self.frames_dropped = 0

        self._provider = None
        self._provider_failed = False
        self._tick_task: Optional[asyncio.Task] = None

    # ──────────────────────────────────────────────────────
    # Landmark provider
    # ──────────────────────────────────────────────────────

    def _get_provider(self):
        """
        Lazy-load MediaPipe so that import-time or model-download errors
        don't crash the rest of the backend.
        """
        if self._provider is None and not self._provider_failed:
            try:
                from app.services.landmark_provider import MediaPipeLandmarkProvider
                self._provider = MediaPipeLandmarkProvider(settings.models_path)
            except Exception as e:
                logger.error(f"Failed to initialise landmark provider: {e}")
                self._provider_failed = True
        return self._provider

    @property
    def provider_ready(self) -> bool:
        return self._provider is not None

    # ──────────────────────────────────────────────────────
    # Frame processing
    # ──────────────────────────────────────────────────────

    def _process_sync(self, keypoints, face_landmarks, now: float) -> LiveState:
        with self._engine_lock:
            live = self.engine.process_frame(keypoints, face_landmarks, now)
            self.breaks.update_activity(live.is_user_present, live.eye_strain_score, now)
            return live

    def _locked(self, fn, *args):
        with self._engine_lock:
            return fn(*args)

    async def _run_locked(self, fn, *args):
        """Runs fn under the engine lock on the executor, off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._locked, fn, *args)

    def _infer_sync(self, image_bytes: bytes):
        from app.services.landmark_provider import decode_frame

        provider = self._get_provider()
        if provider is None:
            return [], None
        frame = decode_frame(image_bytes)
        if frame is None:
            logger.warning("Undecodable frame payload")
            return [], None
        return provider.process(frame)

    async def process_landmarks(
        self,
        keypoints: Optional[Sequence[Any]],
        face_landmarks: Optional[Sequence[float]] = None,
    ) -> Optional[LiveState]:
        """Returns the new LiveState, or None when the frame was dropped."""
        if self._frame_gate.locked():
            return self._drop()
        async with self._frame_gate:
            return await self._run_frame(keypoints, face_landmarks)

    async def process_image(self, image_bytes: bytes) -> Optional[LiveState]:
        if self._frame_gate.locked():
            return self._drop()
        async with self._frame_gate:
            loop = asyncio.get_running_loop()
            keypoints, face = await loop.run_in_executor(None, self._infer_sync, image_bytes)
            return await self._run_frame(keypoints, face)

    def _drop(self) -> None:
        self.frames_dropped += 1
        logger.debug(f"Frame dropped, previous still processing (total dropped: {self.frames_dropped})")
        return None

    async def _run_frame(self, keypoints, face_landmarks) -> LiveState:
        loop = asyncio.get_running_loop()
        live = await loop.run_in_executor(None, self._process_sync, keypoints, face_landmarks, self.clock())
        await self._deliver_effects()
        await ws_manager.send_live_state(live.to_dict())
        return live

    # ──────────────────────────────────────────────────────
    # Effects
    # ──────────────────────────────────────────────────────

    async def _deliver_effects(self):
        effects = await self._run_locked(self.engine.drain_effects)
        for effect in effects:
            await self._notify(effect.kind.value, effect.title, effect.body, effect.silent)
            await ws_manager.send_notification(effect.to_dict())

    async def _notify(self, kind: str, title: str, body: str, silent: bool = True) -> bool:
        try:
            delivered = await self.notifier.show(kind, title, body, silent)
        except Exception as e:
            logger.warning(f"Notifier failed for {kind}: {e}")
            return False
        if not delivered:
            logger.warning(f"Notification not delivered: {kind}")
        return delivered

    async def _broadcast_break_events(self, events):
        for event in events:
            await ws_manager.send_break_event(event.to_dict())
            if event.name == BREAK_DUE:
                minutes = event.payload.get("duration", 5)
                await self._notify(
                    NotificationKind.BREAK_REMINDER.value,
                    "Break Time",
                    f"Time for a {minutes:g}-minute break. Stand up, stretch and rest your eyes.",
                    silent=not self.breaks.settings.sound_enabled,
                )

    # ──────────────────────────────────────────────────────
    # Periodic tick
    # ──────────────────────────────────────────────────────

    def _tick_sync(self, now: float):
        live = self.engine.tick(now)
        self.breaks.update_activity(live.is_user_present, live.eye_strain_score, now)
        events = self.breaks.tick(now)
        if any(e.name == BREAK_DUE for e in events):
            # The due prompt doubles as the fixed-interval reminder
            self.engine.decisions.last_sent[NotificationKind.BREAK_REMINDER] = now
        return events

    async def tick(self) -> List[Dict[str, Any]]:
        """One scheduler tick: engine timers, break timer, deliveries."""
        events = await self._run_locked(self._tick_sync, self.clock())
        await self._deliver_effects()
        await self._broadcast_break_events(events)
        return [e.to_dict() for e in events]

    async def _tick_loop(self):
        interval = self.config.BREAK_TICK_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Break tick failed: {e}", exc_info=True)

    def start(self):
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
            logger.info(f"Break tick started ({self.config.BREAK_TICK_SECONDS:g}s)")

    async def stop(self):
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
            logger.info("Break tick stopped")
        if self._provider is not None:
            self._provider.close()
            self._provider = None
            logger.info("Landmark provider closed")

    def prune_old_metrics(self, days: int) -> int:
        prune = getattr(self.store, "prune_old_metrics", None)
        if prune is None:
            return 0
        try:
            return prune(days)
        except Exception as e:
            logger.warning(f"Metric pruning failed: {e}")
            return 0

    # ──────────────────────────────────────────────────────
    # Engine control
    # ──────────────────────────────────────────────────────

    def live_state(self) -> LiveState:
        with self._engine_lock:
            return self.engine.live_state()

    def start_calibration(self) -> Dict[str, Any]:
        with self._engine_lock:
            return self.engine.start_calibration(self.clock())

    def cancel_calibration(self) -> bool:
        with self._engine_lock:
            return self.engine.cancel_calibration()

    def calibration_status(self) -> Dict[str, Any]:
        with self._engine_lock:
            return self.engine.calibration_status(self.clock())

    def notification_settings(self) -> Dict[str, Any]:
        return self.engine.notification_settings.to_dict()

    def update_notification_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._engine_lock:
            return self.engine.update_notification_settings(changes, self.clock()).to_dict()

    async def test_notification(self, kind: NotificationKind) -> Dict[str, Any]:
        effect = await self._run_locked(self.engine.test_notification, kind, self.clock())
        await self._deliver_effects()
        return effect.to_dict()

    # ──────────────────────────────────────────────────────
    # Break control
    # ──────────────────────────────────────────────────────

    def break_settings(self) -> Dict[str, Any]:
        return self.breaks.get_settings().to_dict()

    def update_break_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._engine_lock:
            return self.breaks.update_settings(changes, self.clock()).to_dict()

    async def _after_break_action(self, record: Optional[BreakRecord]) -> Optional[BreakRecord]:
        await self._broadcast_break_events(self.breaks.drain_events())
        return record

    async def snooze_break(self, minutes: Optional[float] = None) -> BreakRecord:
        record = await self._run_locked(self.breaks.snooze, self.clock(), minutes)
        return await self._after_break_action(record)

    async def skip_break(self) -> BreakRecord:
        record = await self._run_locked(self.breaks.skip, self.clock())
        return await self._after_break_action(record)

    def start_break(self) -> float:
        now = self.clock()
        with self._engine_lock:
            self.breaks.start_break(now)
        return now

    def _end_break_sync(self, post_strain: Optional[float], now: float) -> Optional[BreakRecord]:
        if post_strain is None:
            post_strain = self.engine.live_state().eye_strain_score
        return self.breaks.end_break(post_strain, now)

    async def end_break(self, post_strain: Optional[float] = None) -> Optional[BreakRecord]:
        record = await self._run_locked(self._end_break_sync, post_strain, self.clock())
        return await self._after_break_action(record)

    def time_until_next_break(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "seconds": round(self.breaks.time_until_next_break(now), 1),
            "next_break_time": self.breaks.next_break_time,
            "is_quiet_mode": self.breaks.is_quiet_time(now),
            "break_in_progress": self.breaks.break_in_progress,
        }

    # ──────────────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────────────

    def status(self) -> Dict[str, Any]:
        return {
            "frames_processed": self.engine.frames_processed,
            "frames_dropped": self.frames_dropped,
            "provider_ready": self.provider_ready,
            "tick_running": self._tick_task is not None and not self._tick_task.done(),
            "ws_connections": ws_manager.total_connections,
        }


# ── Singleton accessor ───────────────────────────────────

def get_ergo_service() -> ErgoService:
    return ErgoService.get_instance()
