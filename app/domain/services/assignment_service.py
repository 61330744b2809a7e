"""
Assignment Service - Hands orders to delivery workers

An order is claimed with a single conditional UPDATE, so when several
workers (or a dispatcher and a worker) race for the same order exactly one
wins and the others get a conflict.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_

from app.core.config import settings
from app.core.exceptions import (
    ErrorCode,
    OrderAlreadyAssignedError,
    OrderNotFoundError,
    OrderPaymentIncompleteError,
    OrderStatusError,
    ValidationException,
    WorkerBusyError,
    WorkerNotFoundError,
)
from app.core.logging import get_logger
from app.db.models.delivery_worker import DeliveryWorker, AvailabilityStatus
from app.db.models.order import (
    Order,
    OrderStatus,
    OrderPaymentStatus,
    ASSIGNABLE_STATUSES,
    NEW_ORDER_STATUSES,
    active_assignment,
)
from app.db.models.store import Store
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

_ASSIGNABLE_VALUES = [s.value for s in ASSIGNABLE_STATUSES]

# Candidate rows fetched per round while filtering out skipped orders
_NEW_ORDERS_BATCH = 100


class AssignmentService:
    """Service for accepting, assigning and skipping orders"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox_service = OutboxService(db)

    async def get_active_worker(self, worker_id: int) -> DeliveryWorker:
        """Worker that exists, is active and not deleted"""
        result = await self.db.execute(
            select(DeliveryWorker)
            .where(
                DeliveryWorker.id == worker_id,
                DeliveryWorker.is_active.is_(True),
                DeliveryWorker.is_deleted.is_(False),
            )
            .execution_options(populate_existing=True)
        )
        worker = result.scalar_one_or_none()
        if not worker:
            raise WorkerNotFoundError(worker_id)
        return worker

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

    def _check_claimable(self, order: Order) -> None:
        """Raise the conflict matching the order's current state"""
        if order.assigned_worker_id is not None:
            raise OrderAlreadyAssignedError(order.id, order.assigned_worker_id)
        if order.status not in ASSIGNABLE_STATUSES:
            raise OrderStatusError(order.id, OrderStatus(order.status).value, _ASSIGNABLE_VALUES)

    async def _claim_order(self, order_id: int, worker_id: int) -> bool:
        """
        Conditional claim. Returns False when another claimer got there first
        or the status moved on. Does not commit.
        """
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.assigned_worker_id.is_(None),
                Order.status.in_(ASSIGNABLE_STATUSES),
            )
            .values(
                assigned_worker_id=worker_id,
                status=OrderStatus.ON_THE_WAY,
                accepted_at=datetime.utcnow(),
                updated_at=datetime.utcnow(),
            )
            .returning(Order.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def _reserve_worker(self, worker_id: int) -> bool:
        """
        Flip the worker to on_delivery unless they already hold an active
        order. Does not commit.
        """
        busy = select(Order.id).where(active_assignment(worker_id)).exists()
        result = await self.db.execute(
            update(DeliveryWorker)
            .where(
                DeliveryWorker.id == worker_id,
                DeliveryWorker.availability_status != AvailabilityStatus.ON_DELIVERY,
                ~busy,
            )
            .values(availability_status=AvailabilityStatus.ON_DELIVERY)
            .returning(DeliveryWorker.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def _claim_and_commit(self, order_id: int, worker_id: int) -> Order:
        if not await self._reserve_worker(worker_id):
            await self.db.rollback()
            raise WorkerBusyError(worker_id)

        claimed = await self._claim_order(order_id, worker_id)
        if not claimed:
            await self.db.rollback()
            # Lost the race: report what the winner left behind
            current = await self.get_order(order_id)
            self._check_claimable(current)
            raise OrderAlreadyAssignedError(order_id, current.assigned_worker_id)

        await self.db.commit()
        return await self.get_order(order_id)

    async def accept_order(self, order_id: int, worker_id: int) -> Order:
        """Worker self-assigns an order from the new-orders list"""
        worker = await self.get_active_worker(worker_id)
        order = await self.get_order(order_id)
        self._check_claimable(order)

        order = await self._claim_and_commit(order_id, worker_id)
        logger.info(
            "Order accepted",
            extra_data={"order_id": order_id, "worker_id": worker_id}
        )

        await self._after_assignment(order, worker)
        return await self.get_order(order_id)

    async def assign_order_to_delivery_boy(self, order_id: int, worker_id: int) -> Order:
        """Dispatcher assigns an order. Re-assigning to the same worker is a no-op."""
        worker = await self.get_active_worker(worker_id)
        order = await self.get_order(order_id)

        if order.assigned_worker_id == worker_id:
            return order
        self._check_claimable(order)

        if settings.DISPATCH_REQUIRES_PAID_ORDER and order.payment_status != OrderPaymentStatus.SUCCESS:
            raise OrderPaymentIncompleteError(order_id, OrderPaymentStatus(order.payment_status).value)

        order = await self._claim_and_commit(order_id, worker_id)
        logger.info(
            "Order assigned by dispatcher",
            extra_data={"order_id": order_id, "worker_id": worker_id}
        )

        await self._after_assignment(order, worker)
        return await self.get_order(order_id)

    async def _after_assignment(self, order: Order, worker: DeliveryWorker) -> None:
        """Pickup backfill and store-owner notification; the claim is already committed"""
        try:
            store = None
            if order.store_id:
                store = await self.db.get(Store, order.store_id)

            if store and not order.pickup_address:
                order.pickup_address = store.address
                order.pickup_lat = store.lat
                order.pickup_lng = store.lng

            await self.outbox_service.queue_order_accepted(order, worker, store)
            await self.db.commit()
        except Exception as e:
            logger.error(
                "Post-assignment steps failed; order assignment already committed",
                extra_data={"order_id": order.id, "worker_id": worker.id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()

    async def skip_order(self, order_id: int, worker_id: int) -> Order:
        """Hide an order from the worker's new-orders list"""
        order = await self.get_order(order_id)

        if order.status not in ASSIGNABLE_STATUSES:
            raise ValidationException(
                "Only new or ready-to-deliver orders can be skipped",
                error_code=ErrorCode.ORDER_INVALID_STATUS,
                details={
                    "order_id": order_id,
                    "current_status": OrderStatus(order.status).value,
                    "allowed_statuses": _ASSIGNABLE_VALUES,
                },
            )
        if order.assigned_worker_id is not None and order.assigned_worker_id != worker_id:
            raise OrderAlreadyAssignedError(order_id, order.assigned_worker_id)

        skipped = list(order.skipped_by or [])
        if worker_id not in skipped:
            # New list so the JSON column is detected as changed
            order.skipped_by = skipped + [worker_id]
            await self.db.commit()
            logger.info(
                "Order skipped",
                extra_data={"order_id": order_id, "worker_id": worker_id}
            )
        return order

    async def list_new_orders(self, worker_id: int, limit: Optional[int] = None) -> List[Order]:
        """Newest open orders that are unassigned or mine, minus the ones I skipped"""
        limit = limit or settings.NEW_ORDERS_LIMIT
        query = (
            select(Order)
            .where(
                Order.status.in_(NEW_ORDER_STATUSES),
                or_(
                    Order.assigned_worker_id.is_(None),
                    Order.assigned_worker_id == worker_id,
                ),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        )

        # skipped_by is a JSON list; membership is checked here because JSON
        # containment has no common SQL form across the supported databases
        orders: List[Order] = []
        offset = 0
        while len(orders) < limit:
            result = await self.db.execute(query.offset(offset).limit(_NEW_ORDERS_BATCH))
            batch = list(result.scalars().all())
            for order in batch:
                if worker_id not in (order.skipped_by or []):
                    orders.append(order)
                    if len(orders) == limit:
                        break
            if len(batch) < _NEW_ORDERS_BATCH:
                break
            offset += _NEW_ORDERS_BATCH
        return orders
