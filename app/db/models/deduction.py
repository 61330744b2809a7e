"""
Deduction Model - Charges raised against a worker (damages, penalties)
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Enum as SQLEnum, Numeric, ForeignKey, JSON

from app.db.database import Base


class DeductionStatus(str, enum.Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REVERSED = "REVERSED"


class Deduction(Base):
    """Itemized deduction. Written by the ops back office, read by the wallet screens."""

    __tablename__ = "deductions"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    items = Column(JSON, nullable=False, default=list)  # [{"label": ..., "amount": ...}]
    total = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    status = Column(
        SQLEnum(DeductionStatus, name="deduction_status", values_callable=lambda x: [e.value for e in x]),
        default=DeductionStatus.OPEN,
        nullable=False,
    )

    created_at = Column(DateTime, default=datetime.utcnow)
