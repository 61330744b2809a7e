"""
Wallet API Routes
"""
from datetime import datetime
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.core.exceptions import WorkerNotFoundError
from app.db.database import get_db
from app.db.models.deduction import DeductionStatus
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.wallet_transaction import TransactionType, TransactionSource
from app.domain.services.export_service import export_statement_xlsx
from app.domain.services.wallet_service import WalletService

router = APIRouter()

_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class WalletResponse(BaseModel):
    worker_id: int
    wallet_balance: float
    ledger_balance: float
    owes_company: bool
    amount_owed: float


class LedgerEntryResponse(BaseModel):
    id: int
    type: TransactionType
    source: TransactionSource
    amount: float
    balance_after: float
    meta: Optional[dict[str, Any]] = None
    order_id: Optional[int] = None
    settlement_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatementResponse(BaseModel):
    items: List[LedgerEntryResponse]
    page: int
    limit: int
    total: int


class DeductionResponse(BaseModel):
    id: int
    order_id: Optional[int] = None
    items: List[dict[str, Any]]
    total: float
    status: DeductionStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeductionListResponse(BaseModel):
    items: List[DeductionResponse]
    page: int
    limit: int
    total: int


@router.get(
    "",
    response_model=WalletResponse,
    summary="Wallet summary",
    description="Cached balance, ledger balance and whether the worker owes the company.",
)
async def get_wallet(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await WalletService(db).get_wallet_summary(worker_id)


@router.get(
    "/statement",
    response_model=StatementResponse,
    summary="Wallet statement",
    description="Ledger entries, newest first. type is all, credit or debit.",
)
async def get_statement(
    type: str = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await WalletService(db).get_statement(worker_id, type, page, limit)


@router.get(
    "/statement/export",
    summary="Wallet statement as Excel",
    response_class=Response,
    responses={200: {"content": {_XLSX_MEDIA_TYPE: {}}}},
)
async def export_statement(
    type: str = Query("all"),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    worker = await db.get(DeliveryWorker, worker_id)
    if not worker:
        raise WorkerNotFoundError(worker_id)
    entries = await WalletService(db).get_all_entries(worker_id, type)
    content = export_statement_xlsx(entries, worker_name=worker.full_name, type_filter=type)
    filename = f"wallet_statement_{worker_id}_{datetime.utcnow():%Y%m%d}.xlsx"
    return Response(
        content=content,
        media_type=_XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/deductions", response_model=DeductionListResponse, summary="Deductions raised against the worker")
async def list_deductions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await WalletService(db).list_deductions(worker_id, page, limit)


@router.get(
    "/deductions/{order_id}",
    response_model=Optional[DeductionResponse],
    summary="Deduction for an order",
    description="Latest deduction for the order, or null when there is none.",
)
async def get_deduction_for_order(
    order_id: int,
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await WalletService(db).get_deduction_for_order(worker_id, order_id)
