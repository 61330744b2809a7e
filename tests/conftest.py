"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP client bound to the FastAPI app
- Mock external services (push gateway, ops webhook, Redis)
- Test data factories
"""
# Secrets must be set before importing app; the settings validator refuses an empty JWT key with DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-api-key")

import itertools
import pytest
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import Response

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.config import settings
from app.db.database import Base, get_db
from app.db.models.delivery_worker import DeliveryWorker, AvailabilityStatus
from app.db.models.order import Order, OrderStatus, OrderPaymentStatus, OrderPaymentMethod
from app.db.models.payment import Payment, PaymentMethod, PaymentStatus
from app.db.models.store import Store
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ADMIN_API_KEY = "test-admin-api-key"
_TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-do-not-use-in-production"

# pytest-asyncio 0.23+ manages the event loop (asyncio_mode=auto, function scope)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    """Session factory for tests that need more than one session (races)"""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Auth helpers
# ============================================================================

@pytest.fixture
def auth_headers():
    """Bearer header builder for a delivery worker"""
    def _headers(worker_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(worker_id)}"}

    return _headers


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-API-Key": TEST_ADMIN_API_KEY}


# ============================================================================
# Mock External Services
# ============================================================================

def _mock_http_client(status_code: int = 200, body: dict | None = None) -> tuple[MagicMock, AsyncMock]:
    mock_response = MagicMock(spec=Response)
    mock_response.status_code = status_code
    mock_response.text = ""
    mock_response.json.return_value = body or {"success": True}

    mock_instance = AsyncMock()
    mock_instance.post = AsyncMock(return_value=mock_response)
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    return mock_response, mock_instance


@pytest.fixture
def mock_push_gateway():
    """Mock push gateway responses"""
    with patch("httpx.AsyncClient") as mock_client, \
         patch.object(settings, "PUSH_GATEWAY_URL", "http://push.test"), \
         patch.object(settings, "PUSH_GATEWAY_TOKEN", "push-token"):
        _, mock_instance = _mock_http_client(body={"success": True, "id": "msg-1"})
        mock_client.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def mock_ops_webhook():
    """Mock ops webhook responses"""
    with patch("httpx.AsyncClient") as mock_client, \
         patch.object(settings, "OPS_WEBHOOK_URL", "http://ops.test/hook"):
        _, mock_instance = _mock_http_client(body={"ok": True})
        mock_client.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def mock_task_session(db_session: AsyncSession):
    """Point the Celery task session at the test session"""
    with patch("app.workers.tasks.get_task_session") as mock_session_ctx:
        mock_session_ctx.return_value.__aenter__ = AsyncMock(return_value=db_session)
        mock_session_ctx.return_value.__aexit__ = AsyncMock(return_value=None)
        yield mock_session_ctx


# ============================================================================
# Test Data Factories
# ============================================================================

_sequence = itertools.count(1)


@pytest.fixture
def worker_factory(db_session: AsyncSession):
    """Factory for creating delivery workers"""
    async def _create_worker(
        first_name: str = "Ravi",
        last_name: str = "Kumar",
        phone: str | None = None,
        wallet_balance: Decimal = Decimal("0.00"),
        availability_status: AvailabilityStatus = AvailabilityStatus.OFFLINE,
        is_active: bool = True,
        is_deleted: bool = False,
    ) -> DeliveryWorker:
        worker = DeliveryWorker(
            phone=phone or f"+9190000{next(_sequence):05d}",
            first_name=first_name,
            last_name=last_name,
            wallet_balance=wallet_balance,
            availability_status=availability_status,
            is_active=is_active,
            is_deleted=is_deleted,
        )
        db_session.add(worker)
        await db_session.commit()
        await db_session.refresh(worker)
        return worker

    return _create_worker


@pytest.fixture
def store_factory(db_session: AsyncSession):
    """Factory for creating stores"""
    async def _create_store(
        name: str = "Fresh Mart",
        address: str = "12 MG Road, Bengaluru",
        lat: float | None = 12.975,
        lng: float | None = 77.605,
        device_token: str | None = "store-device-token",
        owner_phone: str | None = "+919811112222",
    ) -> Store:
        store = Store(
            name=name,
            owner_name="Anita",
            owner_phone=owner_phone,
            address=address,
            lat=lat,
            lng=lng,
            device_token=device_token,
        )
        db_session.add(store)
        await db_session.commit()
        await db_session.refresh(store)
        return store

    return _create_store


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating orders"""
    async def _create_order(
        store_id: int | None = None,
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: OrderPaymentStatus = OrderPaymentStatus.SUCCESS,
        payment_method: OrderPaymentMethod = OrderPaymentMethod.COD,
        assigned_worker_id: int | None = None,
        grand_total: Decimal = Decimal("999.00"),
        created_at: datetime | None = None,
        **fields,
    ) -> Order:
        defaults = {
            "customer_name": "Meera",
            "customer_phone": "+919833334444",
            "drop_address": "44 Residency Road, Bengaluru",
            "drop_lat": 12.9667,
            "drop_lng": 77.6,
        }
        order = Order(
            order_number=f"ORD-{next(_sequence):06d}",
            store_id=store_id,
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            assigned_worker_id=assigned_worker_id,
            total_amount=grand_total,
            grand_total=grand_total,
            created_at=created_at or datetime.utcnow(),
            **{**defaults, **fields},
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
def payment_factory(db_session: AsyncSession):
    """Factory for creating collected payments"""
    async def _create_payment(
        order_id: int,
        collected_by: int | None,
        amount: Decimal = Decimal("100.00"),
        status: PaymentStatus = PaymentStatus.SUCCESS,
        payment_method: PaymentMethod = PaymentMethod.COD,
        collected_at: datetime | None = None,
    ) -> Payment:
        payment = Payment(
            order_id=order_id,
            amount=amount,
            payment_method=payment_method,
            status=status,
            collected_by=collected_by,
            collected_at=collected_at or datetime.utcnow(),
        )
        db_session.add(payment)
        await db_session.commit()
        await db_session.refresh(payment)
        return payment

    return _create_payment


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_worker(worker_factory) -> DeliveryWorker:
    return await worker_factory()


@pytest.fixture
async def sample_store(store_factory) -> Store:
    return await store_factory()


@pytest.fixture
async def sample_order(order_factory, sample_store) -> Order:
    return await order_factory(store_id=sample_store.id)


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


class FakeRedis:
    """In-memory Redis stand-in covering the commands the app uses"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        items = self._lists.get(key, [])
        self._lists[key] = items[start:end + 1] if end >= 0 else items[start:]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        return items[start:end + 1] if end >= 0 else items[start:]

    async def aclose(self) -> None:
        self._store.clear()
        self._lists.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis everywhere it was imported"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.alert_service.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Settings pinned for tests
# ============================================================================

@pytest.fixture(autouse=True)
def pin_settings():
    """Known secrets and business constants regardless of the environment"""
    with patch.object(settings, "JWT_SECRET_KEY", _TEST_JWT_SECRET), \
         patch.object(settings, "JWT_ALGORITHM", "HS256"), \
         patch.object(settings, "ADMIN_API_KEY", TEST_ADMIN_API_KEY), \
         patch.object(settings, "DELIVERY_INCENTIVE", Decimal("50.00")), \
         patch.object(settings, "EARNING_RATE_PER_DELIVERY", Decimal("50.00")), \
         patch.object(settings, "STRICT_LIFECYCLE_ORDER", True), \
         patch.object(settings, "DISPATCH_REQUIRES_PAID_ORDER", True), \
         patch.object(settings, "LOCAL_TIMEZONE", "Asia/Kolkata"):
        yield
