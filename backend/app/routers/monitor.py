"""
ErgoPulse Monitor Router
=========================
Frame ingestion (REST + WebSocket), live state, calibration, metric history
and notification settings. A thin controller over ``ErgoService``.
"""

import base64
import binascii
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.models.schemas import (
    CalibrationStatusResponse,
    FramePayload,
    FrameResponse,
    LiveStateResponse,
    NotificationSettingsUpdate,
    NotificationTestRequest,
)
from app.services.ergo_service import ErgoService, get_ergo_service
from app.services.websocket_manager import MONITOR, ws_manager
from ergo_engine.notifications import NotificationKind

logger = logging.getLogger("ergo.router.monitor")

router = APIRouter(tags=["Monitor"])


def _store_query(service: ErgoService, name: str):
    query = getattr(service.store, name, None)
    if query is None:
        raise HTTPException(status_code=503, detail="Metric history not available for this store")
    return query


# ══════════════════════════════════════════════════════════
# Frames + live state
# ══════════════════════════════════════════════════════════

@router.post("/api/monitor/frame", response_model=FrameResponse)
async def submit_frame(payload: FramePayload, service: ErgoService = Depends(get_ergo_service)):
    """Submit one frame's landmarks. Dropped if the previous frame is still in flight."""
    live = await service.process_landmarks(
        [kp.model_dump() for kp in payload.keypoints],
        payload.face_landmarks,
    )
    if live is None:
        return FrameResponse(dropped=True)
    return FrameResponse(state=LiveStateResponse(**live.to_dict()))


@router.get("/api/monitor/live", response_model=LiveStateResponse)
def get_live_state(service: ErgoService = Depends(get_ergo_service)):
    return service.live_state().to_dict()


@router.get("/api/monitor/status")
def get_status(service: ErgoService = Depends(get_ergo_service)):
    return service.status()


# ══════════════════════════════════════════════════════════
# Calibration
# ══════════════════════════════════════════════════════════

@router.post("/api/monitor/calibration/start", response_model=CalibrationStatusResponse)
def start_calibration(service: ErgoService = Depends(get_ergo_service)):
    return service.start_calibration()


@router.get("/api/monitor/calibration/status", response_model=CalibrationStatusResponse)
def calibration_status(service: ErgoService = Depends(get_ergo_service)):
    return service.calibration_status()


@router.post("/api/monitor/calibration/cancel")
def cancel_calibration(service: ErgoService = Depends(get_ergo_service)):
    return {"cancelled": service.cancel_calibration()}


# ══════════════════════════════════════════════════════════
# History
# ══════════════════════════════════════════════════════════

@router.get("/api/monitor/metrics")
def get_metrics(
    metric_type: Optional[str] = Query(default=None),
    hours: float = Query(default=24, gt=0, le=24 * 90),
    service: ErgoService = Depends(get_ergo_service),
):
    return _store_query(service, "get_metrics")(metric_type, hours)


@router.get("/api/monitor/zones")
def get_zone_metrics(
    hours: float = Query(default=24, gt=0, le=24 * 90),
    service: ErgoService = Depends(get_ergo_service),
):
    return _store_query(service, "get_zone_metrics")(hours)


@router.get("/api/monitor/gaze")
def get_monitor_metrics(
    hours: float = Query(default=24, gt=0, le=24 * 90),
    service: ErgoService = Depends(get_ergo_service),
):
    return _store_query(service, "get_monitor_metrics")(hours)


# ══════════════════════════════════════════════════════════
# Notification settings
# ══════════════════════════════════════════════════════════

@router.get("/api/monitor/notification-settings")
def get_notification_settings(service: ErgoService = Depends(get_ergo_service)):
    return service.notification_settings()


@router.put("/api/monitor/notification-settings")
def update_notification_settings(
    update: NotificationSettingsUpdate,
    service: ErgoService = Depends(get_ergo_service),
):
    return service.update_notification_settings(update.model_dump(exclude_none=True))


@router.post("/api/monitor/test-notification")
async def test_notification(
    request: NotificationTestRequest,
    service: ErgoService = Depends(get_ergo_service),
):
    return await service.test_notification(NotificationKind(request.kind))


# ══════════════════════════════════════════════════════════
# WebSocket endpoint
# ══════════════════════════════════════════════════════════

@router.websocket("/ws/monitor")
async def websocket_monitor(websocket: WebSocket, service: ErgoService = Depends(get_ergo_service)):
    """
    Real-time monitoring WebSocket.

    Protocol:
    - Client sends either a base64 JPEG frame or precomputed landmarks:
      {"type": "frame", "data": "<base64 jpeg>"}
      {"type": "landmarks", "keypoints": [...], "face_landmarks": [...]}
    - Every connected client receives:
      {"type": "live_state", "data": {...}}
      {"type": "notification", "data": {...}}
    - A frame that arrives while another is processing is answered with
      {"type": "dropped"}.
    """
    await ws_manager.connect(websocket, MONITOR)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "invalid JSON"})
                continue

            msg_type = msg.get("type", "")

            if msg_type == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if msg_type == "landmarks":
                live = await service.process_landmarks(msg.get("keypoints") or [], msg.get("face_landmarks"))
            elif msg_type == "frame":
                try:
                    image_bytes = base64.b64decode(msg.get("data", ""), validate=True)
                except (binascii.Error, ValueError):
                    await websocket.send_json({"type": "error", "message": "invalid base64 frame"})
                    continue
                live = await service.process_image(image_bytes)
            else:
                continue

            if live is None:
                await websocket.send_json({"type": "dropped"})

    except WebSocketDisconnect:
        logger.info("Monitor client disconnected")
    except Exception as e:
        logger.error("Monitor WS error: %s", e, exc_info=True)
    finally:
        ws_manager.disconnect(websocket, MONITOR)
