"""
Worker API Routes - the calling worker's own profile data
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.db.database import get_db
from app.db.models.delivery_worker import AvailabilityStatus
from app.domain.services.delivery_service import DeliveryService

router = APIRouter()


class LocationUpdateRequest(BaseModel):
    lat: float
    lng: float


class WorkerLocationResponse(BaseModel):
    id: int
    availability_status: AvailabilityStatus
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    location_updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.post(
    "/me/location",
    response_model=WorkerLocationResponse,
    summary="Update the worker's live location",
    responses={400: {"description": "Coordinates out of range"}},
)
async def update_location(
    data: LocationUpdateRequest,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).update_current_location(worker_id, data.lat, data.lng)
