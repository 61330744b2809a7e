"""
Wallet Transaction Model - Immutable Transaction History
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, DateTime, ForeignKey, Numeric, JSON, Enum as SQLEnum, UniqueConstraint,
)

from app.db.database import Base


class TransactionType(str, enum.Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionSource(str, enum.Enum):
    DELIVERY = "DELIVERY"
    INCENTIVE = "INCENTIVE"
    DEDUCTION = "DEDUCTION"
    SETTLEMENT = "SETTLEMENT"
    ADJUSTMENT = "ADJUSTMENT"


class WalletTransaction(Base):
    """Append-only ledger; the source of truth for a worker's wallet balance"""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=False, index=True)

    type = Column(
        SQLEnum(TransactionType, name="wallet_transaction_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    source = Column(
        SQLEnum(TransactionSource, name="wallet_transaction_source", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )

    amount = Column(Numeric(12, 2), nullable=False)  # Always positive; direction is in `type`
    balance_after = Column(Numeric(12, 2), nullable=False)
    meta = Column(JSON, nullable=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Prevent a second delivery credit for the same order
    __table_args__ = (
        UniqueConstraint("worker_id", "order_id", "source", name="uq_worker_order_source"),
    )
