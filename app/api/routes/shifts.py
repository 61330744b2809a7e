"""
Shift API Routes - online/offline and work-hour summary

The same operations are available over HTTP and over an event-style
WebSocket at /api/shifts/ws?token=<jwt>. WebSocket messages look like
{"event": "goOnline" | "goOffline" | "workSummary", "worker_id": n} and every
reply is {"success", "message", "data"}.
"""
import json
from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id, worker_id_from_token
from app.core.exceptions import AppException
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.work_log import WorkLog
from app.domain.services.shift_service import ShiftService

logger = get_logger(__name__)

router = APIRouter()


class WorkLogResponse(BaseModel):
    id: int
    check_in: datetime
    check_out: Optional[datetime] = None
    total_minutes: Optional[int] = None

    class Config:
        from_attributes = True


class ShiftResponse(BaseModel):
    success: bool
    message: str
    data: Optional[WorkLogResponse] = None


class HoursBlock(BaseModel):
    total_minutes: int
    total_hours: str


class WorkSummaryResponse(BaseModel):
    today: HoursBlock
    this_week: HoursBlock
    this_month: HoursBlock


@router.post("/online", response_model=ShiftResponse, summary="Go online")
async def go_online(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    work_log = await ShiftService(db).go_online(worker_id)
    return {"success": True, "message": "You are online", "data": work_log}


@router.post("/offline", response_model=ShiftResponse, summary="Go offline")
async def go_offline(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    work_log = await ShiftService(db).go_offline(worker_id)
    return {"success": True, "message": "You are offline", "data": work_log}


@router.get("/summary", response_model=WorkSummaryResponse, summary="Minutes worked today, this week and this month")
async def get_work_summary(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await ShiftService(db).get_work_summary(worker_id)


# ==================== WebSocket ====================


def _work_log_data(work_log: Optional[WorkLog]) -> Optional[dict[str, Any]]:
    if work_log is None:
        return None
    return jsonable_encoder(WorkLogResponse.model_validate(work_log))


def _reply(success: bool, message: str, data: Any = None) -> dict[str, Any]:
    return {"success": success, "message": message, "data": data}


async def _handle_event(service: ShiftService, worker_id: int, message: dict[str, Any]) -> dict[str, Any]:
    event = message.get("event")
    requested = message.get("worker_id", worker_id)
    if requested != worker_id:
        return _reply(False, "worker_id does not match the authenticated worker")

    if event == "goOnline":
        return _reply(True, "You are online", _work_log_data(await service.go_online(worker_id)))
    if event == "goOffline":
        return _reply(True, "You are offline", _work_log_data(await service.go_offline(worker_id)))
    if event == "workSummary":
        return _reply(True, "Work summary", await service.get_work_summary(worker_id))
    return _reply(False, f"Unknown event '{event}'")


@router.websocket("/ws")
async def shift_events(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    worker_id = worker_id_from_token(token)
    if worker_id is None:
        await websocket.close(code=1008, reason="Authentication required")
        return

    await websocket.accept()
    logger.info("Shift socket connected", extra_data={"worker_id": worker_id})
    service = ShiftService(db)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(_reply(False, "Message must be JSON"))
                continue
            if not isinstance(message, dict):
                await websocket.send_json(_reply(False, "Message must be a JSON object"))
                continue

            try:
                reply = await _handle_event(service, worker_id, message)
            except AppException as e:
                reply = _reply(False, e.message, {"code": e.error_code.value})
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("Shift socket disconnected", extra_data={"worker_id": worker_id})
