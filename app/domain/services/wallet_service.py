"""
Wallet Service - Worker wallet ledger, balance cache and deductions
"""
from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, case

from app.db.models.deduction import Deduction
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.wallet_transaction import (
    WalletTransaction,
    TransactionType,
    TransactionSource,
)
from app.core.exceptions import (
    ErrorCode,
    InsufficientBalanceError,
    ValidationException,
    WorkerNotFoundError,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

STATEMENT_FILTERS = {
    "all": None,
    "credit": TransactionType.CREDIT,
    "debit": TransactionType.DEBIT,
}

ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Round to paise; None counts as zero"""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(Decimal("0.01"))


def paginate(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, offset)"""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 1), 1), max_limit)
    return page, limit, (page - 1) * limit


class WalletService:
    """
    Service for managing worker wallets.

    The ledger (wallet_transactions) is the source of truth. The
    delivery_workers.wallet_balance column is a cache kept in step by
    apply_entry inside the caller's transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply_entry(
        self,
        worker_id: int,
        type: TransactionType,
        source: TransactionSource,
        amount: Decimal,
        meta: Optional[dict] = None,
        order_id: Optional[int] = None,
        settlement_id: Optional[int] = None,
        require_funds: bool = False,
    ) -> WalletTransaction:
        """
        Atomically move the cached balance and append the ledger row.

        Does not commit. Must run inside the caller's transaction so the
        balance change and the ledger row land together.

        With ``require_funds`` a debit only applies while the balance covers
        it; otherwise InsufficientBalanceError is raised.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationException(
                "Wallet entry amount must be positive",
                field="amount",
                error_code=ErrorCode.INVALID_AMOUNT,
            )

        delta = amount if type == TransactionType.CREDIT else -amount
        conditions = [DeliveryWorker.id == worker_id]
        if require_funds and type == TransactionType.DEBIT:
            conditions.append(DeliveryWorker.wallet_balance >= amount)

        result = await self.db.execute(
            update(DeliveryWorker)
            .where(*conditions)
            .values(wallet_balance=DeliveryWorker.wallet_balance + delta)
            .returning(DeliveryWorker.wallet_balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            if len(conditions) > 1:
                # Raises WorkerNotFoundError when the worker is missing
                current = await self.get_cached_balance(worker_id)
                raise InsufficientBalanceError(worker_id, current, amount)
            raise WorkerNotFoundError(worker_id)

        entry = WalletTransaction(
            worker_id=worker_id,
            type=type,
            source=source,
            amount=amount,
            balance_after=to_money(balance_after),
            meta=meta,
            order_id=order_id,
            settlement_id=settlement_id,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Wallet entry applied",
            extra_data={
                "worker_id": worker_id,
                "type": type.value,
                "source": source.value,
                "amount": str(amount),
                "balance_after": str(entry.balance_after),
                "order_id": order_id,
                "settlement_id": settlement_id,
            }
        )
        return entry

    async def get_cached_balance(self, worker_id: int) -> Decimal:
        result = await self.db.execute(
            select(DeliveryWorker.wallet_balance).where(DeliveryWorker.id == worker_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise WorkerNotFoundError(worker_id)
        return to_money(balance)

    async def get_ledger_balance(self, worker_id: int) -> Decimal:
        """sum(CREDIT) - sum(DEBIT) over the worker's ledger"""
        signed = case(
            (WalletTransaction.type == TransactionType.CREDIT, WalletTransaction.amount),
            else_=-WalletTransaction.amount,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0))
            .where(WalletTransaction.worker_id == worker_id)
        )
        return to_money(result.scalar_one())

    async def get_wallet_summary(self, worker_id: int) -> dict:
        wallet_balance = await self.get_cached_balance(worker_id)
        ledger_balance = await self.get_ledger_balance(worker_id)
        owes_company = wallet_balance < 0
        return {
            "worker_id": worker_id,
            "wallet_balance": wallet_balance,
            "ledger_balance": ledger_balance,
            "owes_company": owes_company,
            "amount_owed": -wallet_balance if owes_company else ZERO,
        }

    async def get_statement(
        self,
        worker_id: int,
        type_filter: str = "all",
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Paginated ledger, newest first"""
        if type_filter not in STATEMENT_FILTERS:
            raise ValidationException(
                f"Unknown statement filter '{type_filter}'",
                field="type",
                details={"allowed": list(STATEMENT_FILTERS)},
            )
        page, limit, offset = paginate(page, limit)

        conditions = [WalletTransaction.worker_id == worker_id]
        tx_type = STATEMENT_FILTERS[type_filter]
        if tx_type is not None:
            conditions.append(WalletTransaction.type == tx_type)

        total_result = await self.db.execute(
            select(func.count(WalletTransaction.id)).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(WalletTransaction)
            .where(*conditions)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return {
            "items": list(result.scalars().all()),
            "page": page,
            "limit": limit,
            "total": total,
        }

    async def get_all_entries(self, worker_id: int, type_filter: str = "all") -> list[WalletTransaction]:
        """Full ledger in chronological order (statement export)"""
        if type_filter not in STATEMENT_FILTERS:
            raise ValidationException(f"Unknown statement filter '{type_filter}'", field="type")
        query = select(WalletTransaction).where(WalletTransaction.worker_id == worker_id)
        tx_type = STATEMENT_FILTERS[type_filter]
        if tx_type is not None:
            query = query.where(WalletTransaction.type == tx_type)
        result = await self.db.execute(
            query.order_by(WalletTransaction.created_at, WalletTransaction.id)
        )
        return list(result.scalars().all())

    async def reconcile_wallet(self, worker_id: int) -> dict:
        """
        Rewrite the cached balance from the ledger if they drifted.

        Commits only when a repair was needed.
        """
        cached = await self.get_cached_balance(worker_id)
        ledger = await self.get_ledger_balance(worker_id)
        if cached == ledger:
            return {"worker_id": worker_id, "repaired": False, "balance": ledger}

        await self.db.execute(
            update(DeliveryWorker)
            .where(DeliveryWorker.id == worker_id)
            .values(wallet_balance=ledger)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.warning(
            "Wallet cache drift repaired",
            extra_data={
                "worker_id": worker_id,
                "cached_balance": str(cached),
                "ledger_balance": str(ledger),
                "drift": str(cached - ledger),
            }
        )
        return {
            "worker_id": worker_id,
            "repaired": True,
            "balance": ledger,
            "previous_balance": cached,
        }

    async def list_deductions(self, worker_id: int, page: int = 1, limit: int = 20) -> dict:
        page, limit, offset = paginate(page, limit)
        total_result = await self.db.execute(
            select(func.count(Deduction.id)).where(Deduction.worker_id == worker_id)
        )
        result = await self.db.execute(
            select(Deduction)
            .where(Deduction.worker_id == worker_id)
            .order_by(Deduction.created_at.desc(), Deduction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return {
            "items": list(result.scalars().all()),
            "page": page,
            "limit": limit,
            "total": total_result.scalar_one(),
        }

    async def get_deduction_for_order(self, worker_id: int, order_id: int) -> Optional[Deduction]:
        """Latest deduction raised for the order, None if there is none"""
        result = await self.db.execute(
            select(Deduction)
            .where(Deduction.worker_id == worker_id, Deduction.order_id == order_id)
            .order_by(Deduction.created_at.desc(), Deduction.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
