"""
Scenario 2 - races between separate sessions

Covers:
- two riders accept the same order: the first wins, the second gets a conflict
- many riders accept the same order in parallel: one winner, the rest 409
- one rider accepts two orders in parallel: only one is taken
- a dispatcher assigns an order a rider is about to accept
- the same cash is submitted for settlement twice: only one settlement claims it
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    ConflictException,
    ErrorCode,
    OrderAlreadyAssignedError,
    PaymentsNotFoundError,
)
from app.db.models.delivery_worker import AvailabilityStatus, DeliveryWorker
from app.db.models.order import Order, OrderPaymentStatus, OrderStatus
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.settlement_service import SettlementService

from tests.scenarios.conftest import assert_order_status, assert_wallet_balance


@pytest.mark.scenario
class TestConcurrentAccept:
    """Only one claimer gets the order"""

    async def test_second_rider_loses_after_stale_read(
        self, db_session, session_maker, worker_factory, sample_order
    ):
        rider_a = await worker_factory(first_name="Asha")
        rider_b = await worker_factory(first_name="Bala")

        async with session_maker() as session_a, session_maker() as session_b:
            service_a = AssignmentService(session_a)
            service_b = AssignmentService(session_b)

            # Rider B saw the order while it was still free
            stale = await service_b.get_order(sample_order.id)
            service_b._check_claimable(stale)
            await session_b.rollback()

            await service_a.accept_order(sample_order.id, rider_a.id)

            with pytest.raises(OrderAlreadyAssignedError):
                await service_b._claim_and_commit(sample_order.id, rider_b.id)

        order = await assert_order_status(db_session, sample_order.id, OrderStatus.ON_THE_WAY)
        assert order.assigned_worker_id == rider_a.id

        loser = await db_session.get(DeliveryWorker, rider_b.id, populate_existing=True)
        assert loser.availability_status == AvailabilityStatus.OFFLINE

    async def test_dispatcher_beats_rider(self, db_session, session_maker, worker_factory, sample_order):
        assigned = await worker_factory(first_name="Chitra")
        late = await worker_factory(first_name="Dev")

        async with session_maker() as dispatcher_session, session_maker() as rider_session:
            await AssignmentService(dispatcher_session).assign_order_to_delivery_boy(
                sample_order.id, assigned.id
            )

            with pytest.raises(OrderAlreadyAssignedError) as exc_info:
                await AssignmentService(rider_session).accept_order(sample_order.id, late.id)

        assert exc_info.value.status_code == 409
        order = await assert_order_status(db_session, sample_order.id, OrderStatus.ON_THE_WAY)
        assert order.assigned_worker_id == assigned.id


@pytest.mark.scenario
class TestParallelAccept:
    """Claims issued at the same time from separate connections"""

    @staticmethod
    async def _seed(session_maker, riders: int, orders: int) -> tuple[list[int], list[int]]:
        async with session_maker() as session:
            workers = [
                DeliveryWorker(
                    phone=f"+9198000{i:05d}",
                    first_name=f"Rider{i}",
                    availability_status=AvailabilityStatus.AVAILABLE,
                )
                for i in range(riders)
            ]
            new_orders = [
                Order(
                    order_number=f"ORD-RACE-{i}",
                    status=OrderStatus.PENDING,
                    payment_status=OrderPaymentStatus.SUCCESS,
                    grand_total=Decimal("999.00"),
                )
                for i in range(orders)
            ]
            session.add_all(workers + new_orders)
            await session.commit()
            return [w.id for w in workers], [o.id for o in new_orders]

    @staticmethod
    async def _accept(session_maker, order_id: int, worker_id: int):
        async with session_maker() as session:
            try:
                await AssignmentService(session).accept_order(order_id, worker_id)
            except ConflictException as e:
                return e.status_code, e.error_code
            return "ok", None

    async def test_one_winner_among_many(self, file_session_maker):
        rider_ids, (order_id,) = await self._seed(file_session_maker, riders=5, orders=1)

        outcomes = await asyncio.gather(
            *(self._accept(file_session_maker, order_id, rider_id) for rider_id in rider_ids)
        )

        winners = [rid for rid, (result, _) in zip(rider_ids, outcomes) if result == "ok"]
        losers = [outcome for outcome in outcomes if outcome[0] != "ok"]
        assert len(winners) == 1
        assert losers == [(409, ErrorCode.ORDER_ALREADY_ASSIGNED)] * (len(rider_ids) - 1)

        async with file_session_maker() as check:
            order = await assert_order_status(check, order_id, OrderStatus.ON_THE_WAY)
            assert order.assigned_worker_id == winners[0]
            busy = (
                await check.execute(
                    select(DeliveryWorker.id)
                    .where(DeliveryWorker.availability_status == AvailabilityStatus.ON_DELIVERY)
                )
            ).scalars().all()
            assert busy == [winners[0]]

    async def test_rider_cannot_take_two_orders_at_once(self, file_session_maker):
        (rider_id,), order_ids = await self._seed(file_session_maker, riders=1, orders=2)

        outcomes = await asyncio.gather(
            *(self._accept(file_session_maker, order_id, rider_id) for order_id in order_ids)
        )

        assert set(outcomes) == {("ok", None), (409, ErrorCode.WORKER_BUSY)}
        async with file_session_maker() as check:
            assigned = (
                await check.execute(select(Order.id).where(Order.assigned_worker_id == rider_id))
            ).scalars().all()
            assert len(assigned) == 1


@pytest.mark.scenario
class TestSettlementRace:
    """The same payments cannot be settled twice"""

    async def test_second_settlement_over_same_payments_fails(
        self, db_session, session_maker, sample_worker, sample_order, payment_factory
    ):
        payment = await payment_factory(sample_order.id, sample_worker.id, Decimal("400"))

        async with session_maker() as first, session_maker() as second:
            created = await SettlementService(first).create_settlement(
                sample_worker.id, [payment.id], "cash"
            )

            with pytest.raises(PaymentsNotFoundError):
                await SettlementService(second).create_settlement(
                    sample_worker.id, [payment.id], "upi"
                )

        assert created["amount"] == Decimal("400.00")
        await assert_wallet_balance(db_session, sample_worker.id, Decimal("-400.00"))

    async def test_overlapping_request_only_claims_the_rest(
        self, db_session, session_maker, sample_worker, sample_order, payment_factory
    ):
        first_payment = await payment_factory(sample_order.id, sample_worker.id, Decimal("300"))
        second_payment = await payment_factory(sample_order.id, sample_worker.id, Decimal("200"))

        async with session_maker() as first, session_maker() as second:
            await SettlementService(first).create_settlement(sample_worker.id, [first_payment.id], "cash")
            overlap = await SettlementService(second).create_settlement(
                sample_worker.id, [first_payment.id, second_payment.id], "cash"
            )

        assert overlap["payment_ids"] == [second_payment.id]
        assert overlap["amount"] == Decimal("200.00")
        await assert_wallet_balance(db_session, sample_worker.id, Decimal("-500.00"))
