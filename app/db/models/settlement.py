"""
Settlement Model - Cash handed back by a worker to the company
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey

from app.db.database import Base


class SettlementStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    RECONCILED = "RECONCILED"


class SettlementMethod(str, enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"


class Settlement(Base):
    """A batch of claimed payments. Its payments point back via payments.settlement_id."""

    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=False, index=True)

    # Sum of the payments claimed by this settlement
    amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    method = Column(
        SQLEnum(SettlementMethod, name="settlement_method", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        SQLEnum(SettlementStatus, name="settlement_status", values_callable=lambda x: [e.value for e in x]),
        default=SettlementStatus.PENDING,
        nullable=False,
        index=True,
    )

    reference_id = Column(String(100), nullable=True)
    settled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
