"""
Tests for PaymentService: COD collection, order summary, cash settlement
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import OrderNotFoundError, ValidationException
from app.db.models.payment import Payment, PaymentMethod, PaymentStatus
from app.domain.services.payment_service import PaymentService


@pytest.mark.unit
class TestRecordCodPayment:
    async def test_records_success_payment(self, db_session, sample_worker, sample_order):
        payment = await PaymentService(db_session).record_cod_payment(
            sample_order.id, sample_worker.id, Decimal("999")
        )
        await db_session.commit()

        assert payment.id is not None
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.payment_method == PaymentMethod.COD
        assert payment.amount == Decimal("999.00")
        assert payment.collected_by == sample_worker.id

    async def test_zero_amount_rejected(self, db_session, sample_worker, sample_order):
        with pytest.raises(ValidationException):
            await PaymentService(db_session).record_cod_payment(
                sample_order.id, sample_worker.id, Decimal("0")
            )


@pytest.mark.unit
class TestOrderPaymentSummary:
    async def test_counts_only_collected_payments(
        self, db_session, sample_worker, sample_order, payment_factory
    ):
        await payment_factory(sample_order.id, sample_worker.id, Decimal("500"))
        await payment_factory(sample_order.id, sample_worker.id, Decimal("100"), status=PaymentStatus.FAILED)

        summary = await PaymentService(db_session).get_order_payment_summary(sample_order.id)

        assert summary["grand_total"] == Decimal("999.00")
        assert summary["collected"] == Decimal("500.00")
        assert summary["pending_amount"] == Decimal("499.00")
        assert len(summary["payments"]) == 2

    async def test_pending_never_negative(self, db_session, sample_worker, sample_order, payment_factory):
        await payment_factory(sample_order.id, sample_worker.id, Decimal("1200"))

        summary = await PaymentService(db_session).get_order_payment_summary(sample_order.id)

        assert summary["pending_amount"] == Decimal("0.00")

    async def test_unknown_order(self, db_session):
        with pytest.raises(OrderNotFoundError):
            await PaymentService(db_session).get_order_payment_summary(424242)


@pytest.mark.unit
class TestSettlePayments:
    async def test_matched_and_modified(
        self, db_session, worker_factory, sample_order, payment_factory
    ):
        worker = await worker_factory()
        other = await worker_factory(first_name="Other")
        mine = await payment_factory(sample_order.id, worker.id)
        already = await payment_factory(sample_order.id, worker.id, status=PaymentStatus.SETTLED)
        theirs = await payment_factory(sample_order.id, other.id)

        service = PaymentService(db_session)
        result = await service.settle_payments(worker.id, [mine.id, already.id, theirs.id, mine.id])

        assert result == {"matched": 2, "modified": 1}

        repeat = await service.settle_payments(worker.id, [mine.id])
        assert repeat == {"matched": 1, "modified": 0}

        status = (
            await db_session.execute(select(Payment.status).where(Payment.id == theirs.id))
        ).scalar_one()
        assert status == PaymentStatus.SUCCESS

    async def test_empty_ids_rejected(self, db_session, sample_worker):
        with pytest.raises(ValidationException):
            await PaymentService(db_session).settle_payments(sample_worker.id, [])


@pytest.mark.unit
class TestCashViews:
    async def test_cash_summary_counts_outstanding_cod_today(
        self, db_session, sample_worker, sample_order, payment_factory
    ):
        await payment_factory(sample_order.id, sample_worker.id, Decimal("300"))
        await payment_factory(sample_order.id, sample_worker.id, Decimal("50"), status=PaymentStatus.SETTLED)
        await payment_factory(
            sample_order.id, sample_worker.id, Decimal("80"), payment_method=PaymentMethod.UPI
        )
        await payment_factory(
            sample_order.id, sample_worker.id, Decimal("70"),
            collected_at=datetime.utcnow() - timedelta(days=3),
        )

        summary = await PaymentService(db_session).get_cash_summary(sample_worker.id, "today")
        month = await PaymentService(db_session).get_cash_summary(sample_worker.id, "bogus")

        assert summary["total_collected"] == Decimal("300.00")
        assert summary["total_payments"] == 1
        assert summary["period"] == "today"
        assert month["period"] == "today"

    async def test_collections_include_settled_cod(
        self, db_session, sample_worker, sample_order, payment_factory
    ):
        await payment_factory(sample_order.id, sample_worker.id, Decimal("300"))
        await payment_factory(sample_order.id, sample_worker.id, Decimal("50"), status=PaymentStatus.SETTLED)

        collections = await PaymentService(db_session).get_cash_collections(sample_worker.id)

        assert collections["total_payments"] == 2
        assert collections["total_collected"] == Decimal("350.00")

    async def test_outstanding_and_settled_totals(
        self, db_session, sample_worker, sample_order, payment_factory
    ):
        await payment_factory(sample_order.id, sample_worker.id, Decimal("300"))
        await payment_factory(sample_order.id, sample_worker.id, Decimal("20"), status=PaymentStatus.PENDING)
        await payment_factory(sample_order.id, sample_worker.id, Decimal("100"), status=PaymentStatus.SETTLED)

        service = PaymentService(db_session)

        assert await service.get_outstanding_cod_total(sample_worker.id) == Decimal("320.00")
        assert await service.get_settled_total(sample_worker.id) == Decimal("100.00")
