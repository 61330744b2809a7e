"""
Tests for DeliveryService: pickup, navigation, arrival and completion
"""
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.exceptions import (
    InvalidStateTransitionError,
    OrderNotAssignedToWorkerError,
    ValidationException,
    WorkerNotFoundError,
)
from app.db.models.delivery_worker import AvailabilityStatus, DeliveryWorker
from app.db.models.order import OrderStatus
from app.db.models.outbox_message import OutboxMessage
from app.db.models.payment import Payment, PaymentMethod, PaymentStatus
from app.db.models.wallet_transaction import TransactionSource, TransactionType, WalletTransaction
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.delivery_service import DeliveryService
from app.state_machine.lifecycle import derive_order_stage
from app.state_machine.states import OrderStage


@pytest.fixture
async def accepted_order(db_session, sample_worker, sample_order):
    return await AssignmentService(db_session).accept_order(sample_order.id, sample_worker.id)


async def _walk_to_reached(service: DeliveryService, order_id: int, worker_id: int):
    await service.pickup_order(order_id, worker_id)
    await service.start_navigation(order_id, worker_id)
    return await service.reached_location(order_id, worker_id)


async def _reload_worker(db_session, worker_id: int) -> DeliveryWorker:
    result = await db_session.execute(
        select(DeliveryWorker)
        .where(DeliveryWorker.id == worker_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.unit
class TestLifecycleSteps:
    async def test_each_step_sets_milestone_and_status(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)

        picked = await service.pickup_order(accepted_order.id, sample_worker.id)
        assert picked.picked_up_at is not None
        assert picked.status == OrderStatus.ON_THE_WAY

        navigating = await service.start_navigation(accepted_order.id, sample_worker.id)
        assert navigating.status == OrderStatus.OUT_FOR_DELIVERY
        assert derive_order_stage(navigating) == OrderStage.NAVIGATING

        reached = await service.reached_location(accepted_order.id, sample_worker.id)
        assert reached.status == OrderStatus.YOUR_DESTINATION
        assert reached.reached_at >= reached.navigation_started_at >= reached.picked_up_at

    async def test_each_step_queues_store_notification(self, db_session, sample_worker, accepted_order):
        await DeliveryService(db_session).pickup_order(accepted_order.id, sample_worker.id)

        types = (await db_session.execute(select(OutboxMessage.message_type))).scalars().all()
        assert sorted(types) == ["order_accepted", "order_status_update"]

    async def test_skipping_a_step_is_rejected_in_strict_mode(
        self, db_session, sample_worker, accepted_order
    ):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await DeliveryService(db_session).reached_location(accepted_order.id, sample_worker.id)

        assert exc_info.value.details["current_stage"] == "ACCEPTED"
        assert exc_info.value.details["target_stage"] == "REACHED"

    async def test_relaxed_mode_allows_skipping_forward(self, db_session, sample_worker, accepted_order):
        with patch.object(settings, "STRICT_LIFECYCLE_ORDER", False):
            reached = await DeliveryService(db_session).reached_location(accepted_order.id, sample_worker.id)

        assert derive_order_stage(reached) == OrderStage.REACHED
        assert reached.picked_up_at is None

    async def test_repeating_a_step_is_rejected(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)
        await service.pickup_order(accepted_order.id, sample_worker.id)

        with pytest.raises(InvalidStateTransitionError):
            await service.pickup_order(accepted_order.id, sample_worker.id)

    async def test_other_worker_is_forbidden(self, db_session, worker_factory, accepted_order):
        stranger = await worker_factory(first_name="Stranger")

        with pytest.raises(OrderNotAssignedToWorkerError) as exc_info:
            await DeliveryService(db_session).pickup_order(accepted_order.id, stranger.id)

        assert exc_info.value.status_code == 403

    async def test_unassigned_order_is_forbidden(self, db_session, sample_worker, sample_order):
        with pytest.raises(OrderNotAssignedToWorkerError):
            await DeliveryService(db_session).pickup_order(sample_order.id, sample_worker.id)


@pytest.mark.unit
class TestCompleteDelivery:
    async def test_cod_completion(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)
        await _walk_to_reached(service, accepted_order.id, sample_worker.id)

        result = await service.complete_delivery(
            accepted_order.id, sample_worker.id,
            payment_method="cod", amount_collected="999", notes="Left with guard",
        )

        order = result["order"]
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_time is not None
        assert order.delivery_notes == "Left with guard"
        assert result["earning"]["incentive"] == Decimal("50.00")
        assert result["earning"]["wallet_balance"] == Decimal("50.00")

        payment = await db_session.get(Payment, result["earning"]["payment_id"])
        assert payment.amount == Decimal("999.00")
        assert payment.payment_method == PaymentMethod.COD
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.collected_by == sample_worker.id

        entry = (
            await db_session.execute(
                select(WalletTransaction).where(WalletTransaction.order_id == accepted_order.id)
            )
        ).scalar_one()
        assert entry.type == TransactionType.CREDIT
        assert entry.source == TransactionSource.DELIVERY

        worker = await _reload_worker(db_session, sample_worker.id)
        assert worker.total_deliveries == 1
        assert worker.availability_status == AvailabilityStatus.AVAILABLE

    async def test_worker_with_another_open_order_stays_on_delivery(
        self, db_session, sample_worker, accepted_order, order_factory
    ):
        # Assigned outside the accept flow, e.g. by a data fix
        other = await order_factory(assigned_worker_id=sample_worker.id, status=OrderStatus.ON_THE_WAY)
        service = DeliveryService(db_session)
        await _walk_to_reached(service, accepted_order.id, sample_worker.id)

        await service.complete_delivery(accepted_order.id, sample_worker.id)

        worker = await _reload_worker(db_session, sample_worker.id)
        assert worker.availability_status == AvailabilityStatus.ON_DELIVERY
        assert [o.id for o in await service.get_ongoing_orders(sample_worker.id)] == [other.id]

    async def test_prepaid_completion_records_no_payment(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)
        await _walk_to_reached(service, accepted_order.id, sample_worker.id)

        result = await service.complete_delivery(accepted_order.id, sample_worker.id)

        assert result["earning"]["payment_id"] is None
        payments = (await db_session.execute(select(Payment))).scalars().all()
        assert payments == []

    async def test_zero_incentive_skips_ledger(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)
        await _walk_to_reached(service, accepted_order.id, sample_worker.id)

        with patch.object(settings, "DELIVERY_INCENTIVE", Decimal("0")):
            result = await service.complete_delivery(accepted_order.id, sample_worker.id)

        assert result["earning"]["wallet_balance"] == Decimal("0.00")
        entries = (await db_session.execute(select(WalletTransaction))).scalars().all()
        assert entries == []

    async def test_complete_before_reached_is_rejected(self, db_session, sample_worker, accepted_order):
        service = DeliveryService(db_session)
        await service.pickup_order(accepted_order.id, sample_worker.id)

        with pytest.raises(InvalidStateTransitionError):
            await service.complete_delivery(accepted_order.id, sample_worker.id)

    async def test_delivered_order_never_moves_again(self, db_session, sample_worker, accepted_order):
        # The failed call rolls back and expires loaded objects
        order_id, worker_id = accepted_order.id, sample_worker.id
        service = DeliveryService(db_session)
        await _walk_to_reached(service, order_id, worker_id)
        await service.complete_delivery(order_id, worker_id)

        with pytest.raises(InvalidStateTransitionError):
            await service.complete_delivery(order_id, worker_id)
        with pytest.raises(InvalidStateTransitionError):
            await service.pickup_order(order_id, worker_id)

        worker = await _reload_worker(db_session, worker_id)
        assert worker.total_deliveries == 1
        assert worker.wallet_balance == Decimal("50.00")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"payment_method": "cheque"},
            {"payment_method": "cod", "amount_collected": "-1"},
            {"payment_method": "cod", "amount_collected": "lots"},
        ],
    )
    async def test_bad_input_rejected_before_any_write(
        self, db_session, sample_worker, accepted_order, kwargs
    ):
        service = DeliveryService(db_session)
        await _walk_to_reached(service, accepted_order.id, sample_worker.id)

        with pytest.raises(ValidationException):
            await service.complete_delivery(accepted_order.id, sample_worker.id, **kwargs)

        order = await service.get_order(accepted_order.id)
        assert order.delivered_time is None


@pytest.mark.unit
class TestQueries:
    async def test_ongoing_orders(self, db_session, sample_worker, accepted_order, order_factory):
        await order_factory(assigned_worker_id=sample_worker.id, status=OrderStatus.CANCELLED)

        ongoing = await DeliveryService(db_session).get_ongoing_orders(sample_worker.id)

        assert [o.id for o in ongoing] == [accepted_order.id]

    async def test_details_visibility(self, db_session, worker_factory, order_factory, accepted_order):
        owner_id = accepted_order.assigned_worker_id
        stranger = await worker_factory(first_name="Stranger")
        open_order = await order_factory()
        cancelled = await order_factory(status=OrderStatus.CANCELLED)
        service = DeliveryService(db_session)

        assert (await service.get_order_details(accepted_order.id, owner_id)).id == accepted_order.id
        assert (await service.get_order_details(open_order.id, stranger.id)).id == open_order.id
        assert (await service.get_order_details(accepted_order.id)).id == accepted_order.id
        with pytest.raises(OrderNotAssignedToWorkerError):
            await service.get_order_details(accepted_order.id, stranger.id)
        with pytest.raises(OrderNotAssignedToWorkerError):
            await service.get_order_details(cancelled.id, stranger.id)

    async def test_update_location(self, db_session, sample_worker):
        worker = await DeliveryService(db_session).update_current_location(sample_worker.id, 12.97, 77.59)

        assert worker.current_lat == 12.97
        assert worker.current_lng == 77.59
        assert worker.location_updated_at is not None

    @pytest.mark.parametrize("lat,lng", [(91, 0), (0, -181)])
    async def test_update_location_out_of_range(self, db_session, sample_worker, lat, lng):
        with pytest.raises(ValidationException):
            await DeliveryService(db_session).update_current_location(sample_worker.id, lat, lng)

    async def test_update_location_unknown_worker(self, db_session):
        with pytest.raises(WorkerNotFoundError):
            await DeliveryService(db_session).update_current_location(5555, 1.0, 1.0)
