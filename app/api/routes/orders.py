"""
Order API Routes - rider-facing order list and lifecycle
"""
from typing import Any, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.api.routes.schemas import OrderResponse
from app.db.database import get_db
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.tracking_service import TrackingService

router = APIRouter()


class CompleteDeliveryRequest(BaseModel):
    """Body of the complete-delivery call; cash details only for COD"""
    payment_method: Optional[str] = None
    amount_collected: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v[:1000] if v else None


class DeliveryEarning(BaseModel):
    incentive: float
    wallet_balance: float
    payment_id: Optional[int] = None


class CompleteDeliveryResponse(BaseModel):
    order: OrderResponse
    earning: DeliveryEarning


@router.get(
    "/new",
    response_model=List[OrderResponse],
    summary="New orders for the worker",
    description="Open orders that are unassigned or assigned to the caller, newest first, minus the ones the caller skipped.",
)
async def get_new_orders(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await AssignmentService(db).list_new_orders(worker_id)


@router.get(
    "/ongoing",
    response_model=List[OrderResponse],
    summary="Orders in progress",
)
async def get_ongoing_orders(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).get_ongoing_orders(worker_id)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Order details",
    responses={403: {"description": "Order belongs to another worker"}, 404: {"description": "Order not found"}},
)
async def get_order_details(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).get_order_details(order_id, worker_id)


@router.get(
    "/{order_id}/tracking",
    summary="Tracking overview",
    description="Stage, timeline, map points, distance/ETA, contacts and payment summary for the order screen.",
)
async def get_order_tracking_overview(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await TrackingService(db).get_order_tracking_overview(order_id, worker_id)


@router.post(
    "/{order_id}/accept",
    response_model=OrderResponse,
    summary="Accept an order",
    responses={
        404: {"description": "Order or worker not found"},
        409: {"description": "Already assigned or not in an acceptable status"},
    },
)
async def accept_order(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Claim the order for the calling worker.

    When several workers accept the same order concurrently exactly one
    wins; the others get 409.
    """
    return await AssignmentService(db).accept_order(order_id, worker_id)


@router.post(
    "/{order_id}/skip",
    response_model=OrderResponse,
    summary="Skip an order",
    description="Hides the order from the caller's new-orders list. Repeating the call is a no-op.",
)
async def skip_order(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await AssignmentService(db).skip_order(order_id, worker_id)


@router.post("/{order_id}/pickup", response_model=OrderResponse, summary="Picked up from the store")
async def pickup_order(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).pickup_order(order_id, worker_id)


@router.post("/{order_id}/navigation", response_model=OrderResponse, summary="Started navigation to the customer")
async def start_navigation(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).start_navigation(order_id, worker_id)


@router.post("/{order_id}/reached", response_model=OrderResponse, summary="Reached the customer")
async def reached_location(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await DeliveryService(db).reached_location(order_id, worker_id)


@router.post(
    "/{order_id}/complete",
    response_model=CompleteDeliveryResponse,
    summary="Complete the delivery",
    description=(
        "Marks the order delivered, records the COD payment when cash was collected "
        "and credits the per-delivery incentive to the worker's wallet."
    ),
)
async def complete_delivery(
    order_id: int,
    data: Optional[CompleteDeliveryRequest] = None,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    data = data or CompleteDeliveryRequest()
    return await DeliveryService(db).complete_delivery(
        order_id,
        worker_id,
        payment_method=data.payment_method,
        amount_collected=data.amount_collected,
        notes=data.notes,
    )
