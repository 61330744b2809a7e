"""
Order Model - Customer orders moving through the delivery lifecycle
"""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Text, Float, JSON, and_,
)
from sqlalchemy.orm import relationship

from app.db.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    PRODUCT_SHIPPED = "Product shipped"
    ON_THE_WAY = "On the way"
    OUT_FOR_DELIVERY = "Out for delivery"
    YOUR_DESTINATION = "Your Destination"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class OrderPaymentMethod(str, enum.Enum):
    COD = "COD"
    ONLINE = "ONLINE"


# Statuses from which a worker (or dispatcher) may claim an order
ASSIGNABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.PRODUCT_SHIPPED)

# Statuses listed on the "new orders" screen
NEW_ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PRODUCT_SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
)

# An assigned order in one of these no longer occupies its worker
CLOSED_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.DELIVERED)


class Order(Base):
    """Customer order handed to a delivery worker"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)

    status = Column(
        SQLEnum(OrderStatus, name="order_status", values_callable=lambda x: [e.value for e in x]),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status = Column(
        SQLEnum(OrderPaymentStatus, name="order_payment_status", values_callable=lambda x: [e.value for e in x]),
        default=OrderPaymentStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(
        SQLEnum(OrderPaymentMethod, name="order_payment_method", values_callable=lambda x: [e.value for e in x]),
        default=OrderPaymentMethod.COD,
        nullable=False,
    )

    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True, index=True)
    assigned_worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=True, index=True)

    # Workers who declined the order; JSON list of ids
    skipped_by = Column(JSON, nullable=False, default=list)

    # Money
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    grand_total = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Pickup block, copied from the store when empty
    pickup_address = Column(String(500), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)

    # Customer / drop
    customer_name = Column(String(150), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    drop_address = Column(String(500), nullable=True)
    drop_lat = Column(Float, nullable=True)
    drop_lng = Column(Float, nullable=True)

    delivery_notes = Column(Text, nullable=True)

    # Lifecycle milestones; the current stage is derived from these
    accepted_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    navigation_started_at = Column(DateTime, nullable=True)
    reached_at = Column(DateTime, nullable=True)
    delivered_time = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("Store")
    assigned_worker = relationship("DeliveryWorker")


def active_assignment(worker_id: int):
    """WHERE clause for orders the worker holds and has not finished"""
    return and_(
        Order.assigned_worker_id == worker_id,
        Order.delivered_time.is_(None),
        Order.status.not_in(CLOSED_STATUSES),
    )
