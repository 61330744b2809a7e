"""
Settlement API Routes - rider cash handover to the company
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.api.routes.schemas import PaymentResponse, SettlementResponse
from app.db.models.settlement import SettlementMethod, SettlementStatus
from app.db.database import get_db
from app.domain.services.settlement_service import SettlementService

router = APIRouter()


class CreateSettlementRequest(BaseModel):
    payment_ids: List[int] = Field(..., min_length=1)
    method: str = "cash"


class CreateSettlementResponse(BaseModel):
    settlement_id: int
    amount: float
    count: int
    payment_ids: List[int]
    wallet_balance: float


class ConfirmPayableRequest(BaseModel):
    settlement_id: int
    reference_id: Optional[str] = None
    amount: Optional[Decimal] = None

    @field_validator("reference_id")
    @classmethod
    def strip_reference(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v[:100] if v else None


class PayableQRResponse(BaseModel):
    amount_to_pay: float
    currency: str
    upi_uri: str


class SettlementListResponse(BaseModel):
    items: List[SettlementResponse]
    page: int
    limit: int
    total: int


class SettlementDetailResponse(BaseModel):
    settlement: SettlementResponse
    payments: List[PaymentResponse]


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = "upi"


class WithdrawResponse(BaseModel):
    settlement_id: int
    amount: float
    wallet_balance: float
    status: SettlementStatus


class PayoutItem(BaseModel):
    id: int
    amount: float
    currency: str
    method: SettlementMethod
    status: SettlementStatus
    reference_id: Optional[str] = None
    settled_at: Optional[datetime] = None
    week_start: date
    week_end: date


class PayoutHistoryResponse(BaseModel):
    items: List[PayoutItem]
    page: int
    limit: int
    total: int
    total_pages: int


@router.post(
    "",
    response_model=CreateSettlementResponse,
    summary="Create a settlement",
    description=(
        "Claims the caller's outstanding payments among payment_ids into a new settlement and "
        "debits the wallet by their sum. Payments already claimed elsewhere are left out."
    ),
    responses={
        400: {"description": "Empty payment list or unknown method"},
        404: {"description": "None of the payments could be claimed"},
    },
)
async def create_settlement(
    data: CreateSettlementRequest,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).create_settlement(worker_id, data.payment_ids, data.method)


@router.get("", response_model=SettlementListResponse, summary="List settlements")
async def list_settlements(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).list_settlements(worker_id, page, limit)


@router.get(
    "/payable-qr",
    response_model=PayableQRResponse,
    summary="Amount payable to the company with a UPI link",
)
async def get_payable_qr(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).get_payable_qr(worker_id)


@router.post(
    "/confirm",
    response_model=SettlementResponse,
    summary="Confirm a settlement as paid",
    responses={
        400: {"description": "Amount does not match the settlement"},
        404: {"description": "Settlement not found"},
        409: {"description": "Settlement is not pending"},
    },
)
async def confirm_payable(
    data: ConfirmPayableRequest,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).confirm_payable(
        worker_id,
        data.settlement_id,
        reference_id=data.reference_id,
        amount=data.amount,
    )


@router.post(
    "/withdraw",
    response_model=WithdrawResponse,
    summary="Request a payout from the wallet",
    description=(
        "Opens a PENDING settlement for the amount and debits the wallet. "
        "Rejected when the wallet balance does not cover the amount."
    ),
    responses={
        400: {"description": "Non-positive amount or unknown method"},
        409: {"description": "Insufficient wallet balance"},
    },
)
async def create_withdraw_request(
    data: WithdrawRequest,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).create_withdraw_request(worker_id, data.amount, data.method)


@router.get("/payouts", response_model=PayoutHistoryResponse, summary="Paid and reconciled settlements")
async def get_payout_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).get_payout_history(worker_id, page, limit)


@router.get("/{settlement_id}", response_model=SettlementDetailResponse, summary="Settlement with its payments")
async def get_settlement_detail(
    settlement_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).get_settlement_detail(worker_id, settlement_id)
