"""
Settlement Service - Claims collected cash into settlements and debits wallets

A settlement is created in one transaction: the settlement row, the claim
of its payments, the wallet debit and the ledger entry either all land or
none do.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    ErrorCode,
    PaymentsNotFoundError,
    SettlementAmountMismatchError,
    SettlementNotFoundError,
    SettlementNotPendingError,
    ValidationException,
    WorkerNotFoundError,
)
from app.core.logging import get_logger
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.payment import Payment, PaymentStatus, OUTSTANDING_PAYMENT_STATUSES
from app.db.models.settlement import Settlement, SettlementMethod, SettlementStatus
from app.db.models.wallet_transaction import TransactionType, TransactionSource
from app.domain.services.outbox_service import OutboxService
from app.domain.services.payment_service import PaymentService
from app.domain.services.wallet_service import WalletService, to_money, paginate, ZERO

logger = get_logger(__name__)


def parse_settlement_method(method: str) -> SettlementMethod:
    try:
        return SettlementMethod((method or "").strip().lower())
    except ValueError:
        raise ValidationException(
            f"Unsupported settlement method '{method}'",
            field="method",
            error_code=ErrorCode.INVALID_SETTLEMENT_METHOD,
            details={"allowed": [m.value for m in SettlementMethod]},
        )


def build_upi_uri(amount: Decimal, payee_id: str, payee_name: str, currency: str = "INR") -> str:
    """upi://pay deep link understood by UPI apps"""
    return (
        f"upi://pay?pa={quote(payee_id, safe='@')}"
        f"&pn={quote(payee_name)}"
        f"&am={to_money(amount)}"
        f"&cu={currency}"
    )


class SettlementService:
    """Service for worker cash settlements"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallet_service = WalletService(db)
        self.outbox_service = OutboxService(db)

    async def _ensure_worker(self, worker_id: int) -> None:
        result = await self.db.execute(
            select(DeliveryWorker.id).where(
                DeliveryWorker.id == worker_id,
                DeliveryWorker.is_deleted.is_(False),
            )
        )
        if result.scalar_one_or_none() is None:
            raise WorkerNotFoundError(worker_id)

    async def create_settlement(
        self,
        worker_id: int,
        payment_ids: list[int],
        method: str,
    ) -> dict:
        """
        Claim the worker's outstanding payments into a new settlement.

        Only payments actually moved to SETTLED by this call count toward
        the amount. If nothing could be claimed the transaction is rolled
        back and PaymentsNotFoundError is raised.
        """
        if not payment_ids:
            raise ValidationException("payment_ids must not be empty", field="payment_ids")
        settlement_method = parse_settlement_method(method)
        ids = list(dict.fromkeys(payment_ids))

        await self._ensure_worker(worker_id)

        try:
            settlement = Settlement(
                worker_id=worker_id,
                amount=ZERO,
                method=settlement_method,
                status=SettlementStatus.PENDING,
            )
            self.db.add(settlement)
            await self.db.flush()

            now = datetime.utcnow()
            claim = await self.db.execute(
                update(Payment)
                .where(
                    Payment.id.in_(ids),
                    Payment.collected_by == worker_id,
                    Payment.status.in_(OUTSTANDING_PAYMENT_STATUSES),
                )
                .values(
                    status=PaymentStatus.SETTLED,
                    settlement_id=settlement.id,
                    settled_at=now,
                )
                .returning(Payment.id, Payment.amount)
                .execution_options(synchronize_session=False)
            )
            claimed = claim.all()
            if not claimed:
                raise PaymentsNotFoundError(ids)

            amount = sum((to_money(row.amount) for row in claimed), ZERO)
            settlement.amount = amount

            balance_after: Optional[Decimal] = None
            if amount > 0:
                entry = await self.wallet_service.apply_entry(
                    worker_id=worker_id,
                    type=TransactionType.DEBIT,
                    source=TransactionSource.SETTLEMENT,
                    amount=amount,
                    meta={"settlement_id": settlement.id, "method": settlement_method.value},
                    settlement_id=settlement.id,
                )
                balance_after = entry.balance_after

            await self.db.commit()

        except SQLAlchemyError as e:
            logger.error(
                "Settlement creation failed",
                extra_data={"worker_id": worker_id, "payment_ids": ids, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
            raise
        except AppException:
            await self.db.rollback()
            raise

        logger.info(
            "Settlement created",
            extra_data={
                "settlement_id": settlement.id,
                "worker_id": worker_id,
                "amount": str(amount),
                "count": len(claimed),
                "method": settlement_method.value,
                "balance_after": str(balance_after) if balance_after is not None else None,
            }
        )

        if balance_after is not None and balance_after < settings.NEGATIVE_BALANCE_ALERT_THRESHOLD:
            await self._alert_negative_balance(worker_id, balance_after, settlement.id)

        if balance_after is None:
            balance_after = await self.wallet_service.get_cached_balance(worker_id)

        return {
            "settlement_id": settlement.id,
            "amount": amount,
            "count": len(claimed),
            "payment_ids": [row.id for row in claimed],
            "wallet_balance": balance_after,
        }

    async def _alert_negative_balance(
        self, worker_id: int, balance: Decimal, settlement_id: int
    ) -> None:
        """Best-effort ops alert; the settlement is already committed"""
        try:
            await self.outbox_service.queue_negative_balance_alert(
                worker_id, balance, settlement_id=settlement_id
            )
            await self.db.commit()
            logger.warning(
                "Wallet below alert threshold",
                extra_data={
                    "worker_id": worker_id,
                    "wallet_balance": str(balance),
                    "threshold": str(settings.NEGATIVE_BALANCE_ALERT_THRESHOLD),
                }
            )
        except Exception as e:
            logger.error(
                "Failed to queue negative balance alert; settlement already committed",
                extra_data={"worker_id": worker_id, "settlement_id": settlement_id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()

    async def _get_owned_settlement(self, worker_id: int, settlement_id: int) -> Settlement:
        result = await self.db.execute(
            select(Settlement)
            .where(Settlement.id == settlement_id, Settlement.worker_id == worker_id)
            .execution_options(populate_existing=True)
        )
        settlement = result.scalar_one_or_none()
        if not settlement:
            raise SettlementNotFoundError(settlement_id)
        return settlement

    async def confirm_payable(
        self,
        worker_id: int,
        settlement_id: int,
        reference_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Settlement:
        """PENDING -> PAID once the worker has paid the company. The wallet is not touched."""
        settlement = await self._get_owned_settlement(worker_id, settlement_id)

        if amount is not None and to_money(amount) != to_money(settlement.amount):
            raise SettlementAmountMismatchError(settlement_id, settlement.amount, amount)

        if settlement.status != SettlementStatus.PENDING:
            raise SettlementNotPendingError(settlement_id, SettlementStatus(settlement.status).value)

        values = {"status": SettlementStatus.PAID, "settled_at": datetime.utcnow()}
        if reference_id:
            values["reference_id"] = reference_id

        result = await self.db.execute(
            update(Settlement)
            .where(
                Settlement.id == settlement_id,
                Settlement.status == SettlementStatus.PENDING,
            )
            .values(**values)
            .returning(Settlement.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            await self.db.rollback()
            current = await self._get_owned_settlement(worker_id, settlement_id)
            raise SettlementNotPendingError(settlement_id, SettlementStatus(current.status).value)
        await self.db.commit()

        logger.info(
            "Settlement confirmed as paid",
            extra_data={
                "settlement_id": settlement_id,
                "worker_id": worker_id,
                "reference_id": reference_id,
            }
        )
        return await self._get_owned_settlement(worker_id, settlement_id)

    async def get_payable_qr(self, worker_id: int) -> dict:
        """Outstanding cash payable and a UPI deep link to pay it"""
        payment_service = PaymentService(self.db)
        collected = await payment_service.get_outstanding_cod_total(worker_id)
        settled = await payment_service.get_settled_total(worker_id)
        amount_to_pay = max(collected - settled, ZERO)
        return {
            "amount_to_pay": amount_to_pay,
            "currency": settings.CURRENCY,
            "upi_uri": build_upi_uri(
                amount_to_pay,
                settings.COMPANY_UPI_ID,
                settings.COMPANY_UPI_NAME,
                settings.CURRENCY,
            ),
        }

    async def list_settlements(self, worker_id: int, page: int = 1, limit: int = 20) -> dict:
        page, limit, offset = paginate(page, limit)
        total_result = await self.db.execute(
            select(func.count(Settlement.id)).where(Settlement.worker_id == worker_id)
        )
        result = await self.db.execute(
            select(Settlement)
            .where(Settlement.worker_id == worker_id)
            .order_by(Settlement.created_at.desc(), Settlement.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return {
            "items": list(result.scalars().all()),
            "page": page,
            "limit": limit,
            "total": total_result.scalar_one(),
        }

    async def get_settlement_detail(self, worker_id: int, settlement_id: int) -> dict:
        settlement = await self._get_owned_settlement(worker_id, settlement_id)
        payments_result = await self.db.execute(
            select(Payment)
            .where(Payment.settlement_id == settlement_id)
            .order_by(Payment.id)
            .execution_options(populate_existing=True)
        )
        return {
            "settlement": settlement,
            "payments": list(payments_result.scalars().all()),
        }

    async def create_withdraw_request(
        self,
        worker_id: int,
        amount,
        method: str = SettlementMethod.UPI.value,
    ) -> dict:
        """
        Pay out part of a positive wallet balance.

        Opens a PENDING settlement with no payments and debits the wallet in
        the same transaction. The debit only applies while the balance
        covers it, so parallel requests cannot overdraw the wallet.
        """
        try:
            requested = to_money(amount)
        except (InvalidOperation, ValueError):
            raise ValidationException(
                "amount must be a number", field="amount", error_code=ErrorCode.INVALID_AMOUNT
            )
        if requested <= 0:
            raise ValidationException(
                "Valid amount is required", field="amount", error_code=ErrorCode.INVALID_AMOUNT
            )
        settlement_method = parse_settlement_method(method)

        await self._ensure_worker(worker_id)

        try:
            settlement = Settlement(
                worker_id=worker_id,
                amount=requested,
                method=settlement_method,
                status=SettlementStatus.PENDING,
            )
            self.db.add(settlement)
            await self.db.flush()

            entry = await self.wallet_service.apply_entry(
                worker_id=worker_id,
                type=TransactionType.DEBIT,
                source=TransactionSource.SETTLEMENT,
                amount=requested,
                meta={"settlement_id": settlement.id, "type": "WITHDRAW"},
                settlement_id=settlement.id,
                require_funds=True,
            )
            await self.db.commit()

        except SQLAlchemyError as e:
            logger.error(
                "Withdraw request failed",
                extra_data={"worker_id": worker_id, "amount": str(requested), "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
            raise
        except AppException:
            await self.db.rollback()
            raise

        logger.info(
            "Withdraw requested",
            extra_data={
                "settlement_id": settlement.id,
                "worker_id": worker_id,
                "amount": str(requested),
                "balance_after": str(entry.balance_after),
            }
        )
        return {
            "settlement_id": settlement.id,
            "amount": requested,
            "wallet_balance": entry.balance_after,
            "status": SettlementStatus.PENDING,
        }

    async def get_payout_history(
        self,
        worker_id: int,
        page: int = 1,
        limit: int = 10,
        tz: Optional[str] = None,
    ) -> dict:
        """Paid and reconciled settlements, newest first, each with its Monday-start week"""
        page, limit, offset = paginate(page, limit, max_limit=50)
        done = (SettlementStatus.PAID, SettlementStatus.RECONCILED)
        total_result = await self.db.execute(
            select(func.count(Settlement.id))
            .where(Settlement.worker_id == worker_id, Settlement.status.in_(done))
        )
        result = await self.db.execute(
            select(Settlement)
            .where(Settlement.worker_id == worker_id, Settlement.status.in_(done))
            .order_by(
                Settlement.settled_at.desc(),
                Settlement.created_at.desc(),
                Settlement.id.desc(),
            )
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        zone = ZoneInfo(tz or settings.LOCAL_TIMEZONE)
        items = []
        for payout in result.scalars().all():
            stamp = (payout.settled_at or payout.created_at).replace(tzinfo=timezone.utc)
            local_day = stamp.astimezone(zone).date()
            week_start = local_day - timedelta(days=local_day.weekday())
            items.append({
                "id": payout.id,
                "amount": to_money(payout.amount),
                "currency": settings.CURRENCY,
                "method": payout.method,
                "status": payout.status,
                "reference_id": payout.reference_id,
                "settled_at": payout.settled_at,
                "week_start": week_start,
                "week_end": week_start + timedelta(days=6),
            })

        total = total_result.scalar_one()
        return {
            "items": items,
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        }
