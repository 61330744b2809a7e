"""
Delivery Service - Drives an accepted order through the delivery lifecycle

Pickup, navigation, arrival and completion are conditional UPDATEs on the
milestone timestamps, so two identical concurrent calls cannot both apply
and a delivered order can never be moved again.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    ErrorCode,
    InvalidStateTransitionError,
    OrderNotAssignedToWorkerError,
    OrderNotFoundError,
    ValidationException,
    WorkerNotFoundError,
)
from app.core.logging import get_logger
from app.db.models.delivery_worker import DeliveryWorker, AvailabilityStatus
from app.db.models.order import Order, ASSIGNABLE_STATUSES, active_assignment
from app.db.models.payment import PaymentMethod
from app.db.models.store import Store
from app.db.models.wallet_transaction import TransactionType, TransactionSource
from app.domain.services.outbox_service import OutboxService
from app.domain.services.payment_service import PaymentService
from app.domain.services.wallet_service import WalletService, to_money, ZERO
from app.state_machine.lifecycle import derive_order_stage
from app.state_machine.states import (
    OrderStage,
    STAGE_SEQUENCE,
    STAGE_STATUS,
    STAGE_TIMESTAMP_FIELDS,
    is_valid_transition,
    predecessor_of,
    stage_rank,
)

logger = get_logger(__name__)


def _parse_amount(value) -> Decimal:
    if value is None or value == "":
        return ZERO
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError):
        raise ValidationException(
            "amount_collected must be a number",
            field="amount_collected",
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    if amount < 0:
        raise ValidationException(
            "amount_collected cannot be negative",
            field="amount_collected",
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    return amount


class DeliveryService:
    """Service for the order lifecycle after assignment"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox_service = OutboxService(db)
        self.wallet_service = WalletService(db)
        self.payment_service = PaymentService(db)

    async def get_order(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def _get_assigned_order(self, order_id: int, worker_id: int) -> Order:
        order = await self.get_order(order_id)
        if order.assigned_worker_id is None or order.assigned_worker_id != worker_id:
            raise OrderNotAssignedToWorkerError(order_id, worker_id)
        return order

    async def _advance(
        self,
        order_id: int,
        worker_id: int,
        target: OrderStage,
        extra_values: Optional[dict] = None,
    ) -> datetime:
        """
        Move the order into ``target``. Does not commit.

        Returns the milestone timestamp written.
        """
        order = await self._get_assigned_order(order_id, worker_id)
        strict = settings.STRICT_LIFECYCLE_ORDER
        current = derive_order_stage(order)
        if not is_valid_transition(current, target, strict=strict):
            logger.warning(
                "Invalid lifecycle transition attempted",
                extra_data={
                    "order_id": order_id,
                    "worker_id": worker_id,
                    "current_stage": current.value,
                    "target_stage": target.value,
                }
            )
            raise InvalidStateTransitionError(order_id, current.value, target.value)

        target_column = getattr(Order, STAGE_TIMESTAMP_FIELDS[target])
        conditions = [
            Order.id == order_id,
            Order.assigned_worker_id == worker_id,
            target_column.is_(None),
            Order.delivered_time.is_(None),
        ]
        # Nothing later than the target may already be set
        for later in STAGE_SEQUENCE[stage_rank(target) + 1:]:
            conditions.append(getattr(Order, STAGE_TIMESTAMP_FIELDS[later]).is_(None))
        if strict:
            predecessor = predecessor_of(target)
            if predecessor in STAGE_TIMESTAMP_FIELDS:
                conditions.append(getattr(Order, STAGE_TIMESTAMP_FIELDS[predecessor]).is_not(None))

        now = datetime.utcnow()
        values = {
            STAGE_TIMESTAMP_FIELDS[target]: now,
            "status": STAGE_STATUS[target],
            "updated_at": now,
        }
        if extra_values:
            values.update(extra_values)

        result = await self.db.execute(
            update(Order)
            .where(*conditions)
            .values(**values)
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            # A concurrent call moved the order between our read and write
            await self.db.rollback()
            latest = await self.get_order(order_id)
            raise InvalidStateTransitionError(order_id, derive_order_stage(latest).value, target.value)

        logger.info(
            "Order lifecycle advanced",
            extra_data={
                "order_id": order_id,
                "worker_id": worker_id,
                "from_stage": current.value,
                "to_stage": target.value,
            }
        )
        return now

    async def _transition(self, order_id: int, worker_id: int, target: OrderStage) -> Order:
        await self._advance(order_id, worker_id, target)
        await self.db.commit()
        order = await self.get_order(order_id)
        await self._notify_status_change(order)
        return await self.get_order(order_id)

    async def pickup_order(self, order_id: int, worker_id: int) -> Order:
        return await self._transition(order_id, worker_id, OrderStage.PICKED_UP)

    async def start_navigation(self, order_id: int, worker_id: int) -> Order:
        return await self._transition(order_id, worker_id, OrderStage.NAVIGATING)

    async def reached_location(self, order_id: int, worker_id: int) -> Order:
        return await self._transition(order_id, worker_id, OrderStage.REACHED)

    async def complete_delivery(
        self,
        order_id: int,
        worker_id: int,
        payment_method: Optional[str] = None,
        amount_collected=None,
        notes: Optional[str] = None,
    ) -> dict:
        """
        Mark the order delivered and settle the worker's side in one transaction:
        COD payment (if cash was collected), wallet incentive credit, delivery
        counter and availability.
        """
        method = (payment_method or "").strip().upper() or None
        if method is not None and method not in {m.value for m in PaymentMethod}:
            raise ValidationException(
                f"Unsupported payment method '{payment_method}'",
                field="payment_method",
                details={"allowed": [m.value for m in PaymentMethod]},
            )
        amount = _parse_amount(amount_collected)
        incentive = to_money(settings.DELIVERY_INCENTIVE)

        try:
            delivered_at = await self._advance(
                order_id, worker_id, OrderStage.DELIVERED,
                extra_values={"delivery_notes": notes},
            )

            payment_id = None
            if method == PaymentMethod.COD.value and amount > 0:
                payment = await self.payment_service.record_cod_payment(
                    order_id=order_id,
                    worker_id=worker_id,
                    amount=amount,
                    collected_at=delivered_at,
                )
                payment_id = payment.id

            if incentive > 0:
                entry = await self.wallet_service.apply_entry(
                    worker_id=worker_id,
                    type=TransactionType.CREDIT,
                    source=TransactionSource.DELIVERY,
                    amount=incentive,
                    meta={"order_id": order_id, "reason": "delivery_incentive"},
                    order_id=order_id,
                )
                wallet_balance = entry.balance_after
            else:
                wallet_balance = await self.wallet_service.get_cached_balance(worker_id)

            # Still holding another undelivered order: stay on_delivery
            other_active = await self.db.scalar(
                select(Order.id).where(active_assignment(worker_id)).limit(1)
            )
            availability = (
                AvailabilityStatus.ON_DELIVERY if other_active is not None
                else AvailabilityStatus.AVAILABLE
            )

            await self.db.execute(
                update(DeliveryWorker)
                .where(DeliveryWorker.id == worker_id)
                .values(
                    total_deliveries=DeliveryWorker.total_deliveries + 1,
                    availability_status=availability,
                )
                .execution_options(synchronize_session=False)
            )

            await self.db.commit()

        except SQLAlchemyError as e:
            logger.error(
                "Failed to complete delivery",
                extra_data={"order_id": order_id, "worker_id": worker_id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
            raise
        except AppException:
            await self.db.rollback()
            raise

        logger.info(
            "Delivery completed",
            extra_data={
                "order_id": order_id,
                "worker_id": worker_id,
                "payment_method": method,
                "amount_collected": str(amount),
                "payment_id": payment_id,
                "incentive": str(incentive),
                "wallet_balance": str(wallet_balance),
            }
        )

        order = await self.get_order(order_id)
        await self._notify_status_change(order)
        order = await self.get_order(order_id)
        return {
            "order": order,
            "earning": {
                "incentive": incentive,
                "wallet_balance": wallet_balance,
                "payment_id": payment_id,
            },
        }

    async def _notify_status_change(self, order: Order) -> None:
        """Best-effort store-owner notification after the transition committed"""
        try:
            store = await self.db.get(Store, order.store_id) if order.store_id else None
            await self.outbox_service.queue_order_status_update(order, store)
            await self.db.commit()
        except Exception as e:
            logger.error(
                "Failed to queue order status notification; transition already committed",
                extra_data={"order_id": order.id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()

    async def get_ongoing_orders(self, worker_id: int) -> List[Order]:
        """Orders assigned to the worker that are not delivered yet"""
        result = await self.db.execute(
            select(Order)
            .where(active_assignment(worker_id))
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def get_order_details(self, order_id: int, worker_id: Optional[int] = None) -> Order:
        """
        Order visible to the worker: assigned to them, or still open for
        acceptance. Without a worker id no visibility check is applied.
        """
        order = await self.get_order(order_id)
        if worker_id is None:
            return order
        if order.assigned_worker_id is None:
            if order.status not in ASSIGNABLE_STATUSES:
                raise OrderNotAssignedToWorkerError(order_id, worker_id)
        elif order.assigned_worker_id != worker_id:
            raise OrderNotAssignedToWorkerError(order_id, worker_id)
        return order

    async def update_current_location(self, worker_id: int, lat: float, lng: float) -> DeliveryWorker:
        if not -90 <= lat <= 90:
            raise ValidationException("Latitude must be between -90 and 90", field="lat")
        if not -180 <= lng <= 180:
            raise ValidationException("Longitude must be between -180 and 180", field="lng")

        result = await self.db.execute(
            update(DeliveryWorker)
            .where(DeliveryWorker.id == worker_id, DeliveryWorker.is_deleted.is_(False))
            .values(current_lat=lat, current_lng=lng, location_updated_at=datetime.utcnow())
            .returning(DeliveryWorker.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            await self.db.rollback()
            raise WorkerNotFoundError(worker_id)
        await self.db.commit()

        worker_result = await self.db.execute(
            select(DeliveryWorker)
            .where(DeliveryWorker.id == worker_id)
            .execution_options(populate_existing=True)
        )
        return worker_result.scalar_one()
