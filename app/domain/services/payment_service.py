"""
Payment Service - COD cash collection and order payment tracking
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func

from app.db.models.order import Order
from app.db.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    OUTSTANDING_PAYMENT_STATUSES,
)
from app.domain.services.earnings_service import period_bounds
from app.domain.services.wallet_service import to_money, ZERO
from app.core.exceptions import OrderNotFoundError, ValidationException, ErrorCode
from app.core.logging import get_logger

logger = get_logger(__name__)

# Payments that count as money received for an order
_COLLECTED_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.SETTLED)


class PaymentService:
    """Service for payments collected by delivery workers"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_cod_payment(
        self,
        order_id: int,
        worker_id: int,
        amount: Decimal,
        collected_at: Optional[datetime] = None,
    ) -> Payment:
        """Cash collected at the door. Does not commit."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationException(
                "Collected amount must be positive",
                field="amount_collected",
                error_code=ErrorCode.INVALID_AMOUNT,
            )

        payment = Payment(
            order_id=order_id,
            amount=amount,
            payment_method=PaymentMethod.COD,
            status=PaymentStatus.SUCCESS,
            collected_by=worker_id,
            collected_at=collected_at or datetime.utcnow(),
        )
        self.db.add(payment)
        await self.db.flush()

        logger.info(
            "COD payment recorded",
            extra_data={
                "payment_id": payment.id,
                "order_id": order_id,
                "worker_id": worker_id,
                "amount": str(amount),
            }
        )
        return payment

    async def get_order_payment_summary(self, order_id: int) -> dict:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)

        payments_result = await self.db.execute(
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at, Payment.id)
        )
        payments = list(payments_result.scalars().all())

        grand_total = to_money(order.grand_total)
        collected = sum(
            (to_money(p.amount) for p in payments if p.status in _COLLECTED_STATUSES),
            ZERO,
        )
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "grand_total": grand_total,
            "collected": collected,
            "pending_amount": max(grand_total - collected, ZERO),
            "payments": payments,
        }

    async def settle_payments(self, worker_id: int, payment_ids: list[int]) -> dict:
        """
        Mark the worker's unsettled payments as SETTLED.

        matched counts payments that belong to the worker; modified counts
        the ones this call actually moved.
        """
        if not payment_ids:
            raise ValidationException("payment_ids must not be empty", field="payment_ids")
        ids = list(dict.fromkeys(payment_ids))

        matched_result = await self.db.execute(
            select(func.count(Payment.id))
            .where(Payment.id.in_(ids), Payment.collected_by == worker_id)
        )
        matched = matched_result.scalar_one()

        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id.in_(ids),
                Payment.collected_by == worker_id,
                Payment.status.in_(OUTSTANDING_PAYMENT_STATUSES),
            )
            .values(status=PaymentStatus.SETTLED, settled_at=datetime.utcnow())
            .returning(Payment.id)
            .execution_options(synchronize_session=False)
        )
        modified_ids = list(result.scalars().all())
        await self.db.commit()

        logger.info(
            "Cash payments settled",
            extra_data={
                "worker_id": worker_id,
                "requested": len(ids),
                "matched": matched,
                "modified": len(modified_ids),
            }
        )
        return {"matched": matched, "modified": len(modified_ids)}

    async def get_cash_summary(
        self,
        worker_id: int,
        period: str = "today",
        now: Optional[datetime] = None,
    ) -> dict:
        """Outstanding COD cash collected within the period"""
        start, end, period = period_bounds(period, now)
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Payment.amount), 0),
                func.count(Payment.id),
            )
            .where(
                Payment.collected_by == worker_id,
                Payment.payment_method == PaymentMethod.COD,
                Payment.status.in_(OUTSTANDING_PAYMENT_STATUSES),
                Payment.collected_at >= start,
                Payment.collected_at < end,
            )
        )
        total, count = result.one()
        return {
            "total_collected": to_money(total),
            "total_payments": count,
            "period": period,
            "last_updated": datetime.utcnow(),
        }

    async def get_cash_collections(self, worker_id: int, now: Optional[datetime] = None) -> dict:
        """Today's COD payments collected by the worker"""
        start, end, _ = period_bounds("today", now)
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.collected_by == worker_id,
                Payment.payment_method == PaymentMethod.COD,
                Payment.collected_at >= start,
                Payment.collected_at < end,
            )
            .order_by(Payment.collected_at.desc(), Payment.id.desc())
        )
        payments = list(result.scalars().all())
        return {
            "total_collected": sum((to_money(p.amount) for p in payments), ZERO),
            "payments": payments,
            "total_payments": len(payments),
        }

    async def get_outstanding_cod_total(self, worker_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0))
            .where(
                Payment.collected_by == worker_id,
                Payment.payment_method == PaymentMethod.COD,
                Payment.status.in_(OUTSTANDING_PAYMENT_STATUSES),
            )
        )
        return to_money(result.scalar_one())

    async def get_settled_total(self, worker_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0))
            .where(
                Payment.collected_by == worker_id,
                Payment.status == PaymentStatus.SETTLED,
            )
        )
        return to_money(result.scalar_one())
