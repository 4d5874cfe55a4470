"""
ErgoPulse Breaks Router
Break scheduler settings, outcomes (snooze / skip / take), history and the
live scheduler event stream.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.models.schemas import (
    BreakRecordResponse,
    BreakSettingsUpdate,
    BreakStatsResponse,
    EndBreakRequest,
    SnoozeRequest,
)
from app.services.ergo_service import ErgoService, get_ergo_service
from app.services.websocket_manager import BREAKS, ws_manager

logger = logging.getLogger("ergo.router.breaks")

router = APIRouter(tags=["Breaks"])


@router.get("/api/breaks/settings")
def get_break_settings(service: ErgoService = Depends(get_ergo_service)):
    return service.break_settings()


@router.put("/api/breaks/settings")
def update_break_settings(update: BreakSettingsUpdate, service: ErgoService = Depends(get_ergo_service)):
    return service.update_break_settings(update.model_dump(exclude_none=True))


@router.post("/api/breaks/snooze", response_model=BreakRecordResponse)
async def snooze_break(request: SnoozeRequest = SnoozeRequest(), service: ErgoService = Depends(get_ergo_service)):
    record = await service.snooze_break(request.minutes)
    return record.to_dict()


@router.post("/api/breaks/skip", response_model=BreakRecordResponse)
async def skip_break(service: ErgoService = Depends(get_ergo_service)):
    record = await service.skip_break()
    return record.to_dict()


@router.post("/api/breaks/start")
def start_break(service: ErgoService = Depends(get_ergo_service)):
    return {"started_at": service.start_break()}


@router.post("/api/breaks/end", response_model=BreakRecordResponse)
async def end_break(request: EndBreakRequest = EndBreakRequest(), service: ErgoService = Depends(get_ergo_service)):
    record = await service.end_break(request.post_strain)
    if record is None:
        raise HTTPException(status_code=409, detail="No break in progress")
    return record.to_dict()


@router.get("/api/breaks/time-until")
def time_until_next_break(service: ErgoService = Depends(get_ergo_service)):
    return service.time_until_next_break()


@router.get("/api/breaks/history")
def get_break_history(
    days: int = Query(default=7, ge=1, le=365),
    service: ErgoService = Depends(get_ergo_service),
):
    return [r.to_dict() for r in service.breaks.get_break_history(days)]


@router.get("/api/breaks/stats", response_model=BreakStatsResponse)
def get_break_stats(
    days: int = Query(default=7, ge=1, le=365),
    service: ErgoService = Depends(get_ergo_service),
):
    return service.breaks.break_stats(days)


@router.websocket("/ws/breaks")
async def websocket_breaks(websocket: WebSocket, service: ErgoService = Depends(get_ergo_service)):
    """
    Scheduler event stream: countdown-update, break-due, break-warning,
    break-recorded, each as {"type", "data", "timestamp"}. The current
    countdown is sent once on connect.
    """
    await ws_manager.connect(websocket, BREAKS)
    try:
        await websocket.send_json({"type": "time-until", "data": service.time_until_next_break()})
        while True:
            msg = await websocket.receive_json()
            if msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("Breaks client disconnected")
    except Exception as e:
        logger.error("Breaks WS error: %s", e, exc_info=True)
    finally:
        ws_manager.disconnect(websocket, BREAKS)
