"""
Payment Model - Money collected for an order (COD cash or digital)
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey

from app.db.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    SETTLED = "SETTLED"
    FAILED = "FAILED"


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    ONLINE = "ONLINE"
    UPI = "UPI"
    CARD = "CARD"


# Cash a worker is still holding on behalf of the company
OUTSTANDING_PAYMENT_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.PENDING)


class Payment(Base):
    """
    Payment against an order.

    Status only moves forward: PENDING/SUCCESS -> SETTLED. A payment is
    claimed by at most one settlement.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)

    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=lambda x: [e.value for e in x]),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )

    collected_by = Column(Integer, ForeignKey("delivery_workers.id"), nullable=True, index=True)
    collected_at = Column(DateTime, nullable=True)

    settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=True, index=True)
    settled_at = Column(DateTime, nullable=True)

    # Gateway or receipt reference for digital payments
    transaction_ref = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
