"""
Payment API Routes - order payment summary and rider cash collections
"""
from datetime import datetime
from typing import List
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.api.routes.schemas import PaymentResponse
from app.db.database import get_db
from app.domain.services.payment_service import PaymentService

router = APIRouter()


class OrderPaymentSummaryResponse(BaseModel):
    order_id: int
    order_number: str
    grand_total: float
    collected: float
    pending_amount: float
    payments: List[PaymentResponse]


class SettleCashRequest(BaseModel):
    payment_ids: List[int] = Field(..., min_length=1)


class SettleCashResponse(BaseModel):
    matched: int
    modified: int


class CashSummaryResponse(BaseModel):
    total_collected: float
    total_payments: int
    period: str
    last_updated: datetime


class CashCollectionsResponse(BaseModel):
    total_collected: float
    total_payments: int
    payments: List[PaymentResponse]


@router.get(
    "/orders/{order_id}/summary",
    response_model=OrderPaymentSummaryResponse,
    summary="Payment summary for an order",
)
async def get_order_payment_summary(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await PaymentService(db).get_order_payment_summary(order_id)


@router.post(
    "/settle",
    response_model=SettleCashResponse,
    summary="Mark collected cash as settled",
    description="matched counts the caller's payments among the ids; modified counts the ones this call moved to SETTLED.",
)
async def settle_cash(
    data: SettleCashRequest,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await PaymentService(db).settle_payments(worker_id, data.payment_ids)


@router.get(
    "/cash/summary",
    response_model=CashSummaryResponse,
    summary="Outstanding cash collected in a period",
)
async def get_cash_summary(
    period: str = Query("today", description="today, week or month"),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await PaymentService(db).get_cash_summary(worker_id, period)


@router.get(
    "/cash/collections",
    response_model=CashCollectionsResponse,
    summary="Today's COD collections",
)
async def get_cash_collections(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await PaymentService(db).get_cash_collections(worker_id)
