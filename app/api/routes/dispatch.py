"""
Dispatch API Routes - dispatcher console (X-Admin-API-Key)
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.routes.schemas import OrderResponse
from app.core.logging import get_logger
from app.db.database import get_db
from app.domain.services.alert_service import get_status_history
from app.domain.services.assignment_service import AssignmentService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class AssignOrderRequest(BaseModel):
    worker_id: int = Field(..., gt=0)


class WorkerStatusHistoryResponse(BaseModel):
    events: list[dict]
    count: int


@router.post(
    "/orders/{order_id}/assign",
    response_model=OrderResponse,
    summary="Assign an order to a delivery worker",
    description=(
        "Assigns an unassigned order. Assigning to the worker who already holds it is a no-op. "
        "When DISPATCH_REQUIRES_PAID_ORDER is on, only paid orders can be dispatched."
    ),
    responses={
        400: {"description": "Order is not paid"},
        404: {"description": "Order or worker not found"},
        409: {"description": "Order already assigned or not assignable"},
    },
)
async def assign_order(
    order_id: int,
    data: AssignOrderRequest,
    db: AsyncSession = Depends(get_db),
):
    logger.info(
        "Dispatcher assignment requested",
        extra_data={"order_id": order_id, "worker_id": data.worker_id}
    )
    return await AssignmentService(db).assign_order_to_delivery_boy(order_id, data.worker_id)


@router.get(
    "/workers/status-history",
    response_model=WorkerStatusHistoryResponse,
    summary="Recent worker online/offline events",
)
async def worker_status_history(
    limit: int = Query(50, ge=1, le=100),
):
    events = await get_status_history(limit)
    return {"events": events, "count": len(events)}
