"""
Fixtures and helpers for end-to-end business scenarios.

Provides:
- walking an order through the rider lifecycle
- DB assertions (order status, wallet, outbox)
- a file-backed database for tests that need truly parallel sessions
"""
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.db.database import Base
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.order import Order, OrderStatus
from app.db.models.outbox_message import OutboxMessage
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.wallet_service import WalletService


# ============================================================================
# Parallel sessions
# ============================================================================

@pytest.fixture
async def file_session_maker(tmp_path):
    """
    Sessions with their own connections to an on-disk SQLite file.

    The in-memory engine shares one connection through StaticPool, so
    concurrent callers there never really overlap.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ============================================================================
# Lifecycle helpers
# ============================================================================

async def walk_to_reached(db: AsyncSession, order_id: int, worker_id: int) -> None:
    """Accept, pick up, navigate and reach the drop point"""
    await AssignmentService(db).accept_order(order_id, worker_id)
    delivery = DeliveryService(db)
    await delivery.pickup_order(order_id, worker_id)
    await delivery.start_navigation(order_id, worker_id)
    await delivery.reached_location(order_id, worker_id)


# ============================================================================
# DB assertions
# ============================================================================

async def assert_order_status(db: AsyncSession, order_id: int, expected: OrderStatus) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one()
    assert order.status == expected, f"order {order_id}: {order.status} != {expected}"
    return order


async def assert_wallet_balance(db: AsyncSession, worker_id: int, expected: Decimal) -> None:
    """Cached balance and ledger sum must both match"""
    result = await db.execute(
        select(DeliveryWorker.wallet_balance).where(DeliveryWorker.id == worker_id)
    )
    cached = result.scalar_one()
    ledger = await WalletService(db).get_ledger_balance(worker_id)
    assert Decimal(cached) == expected, f"cached balance {cached} != {expected}"
    assert ledger == expected, f"ledger balance {ledger} != {expected}"


async def outbox_types(db: AsyncSession) -> list[str]:
    result = await db.execute(select(OutboxMessage.message_type).order_by(OutboxMessage.id))
    return list(result.scalars().all())
