"""
Delivery Worker Model - Riders, availability and the cached wallet balance
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, Boolean, Float,
)

from app.db.database import Base


class AvailabilityStatus(str, enum.Enum):
    AVAILABLE = "available"
    ON_DELIVERY = "on_delivery"
    OFFLINE = "offline"


class DeliveryWorker(Base):
    """Delivery worker (rider)"""

    __tablename__ = "delivery_workers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    device_token = Column(String(255), nullable=True)

    availability_status = Column(
        SQLEnum(
            AvailabilityStatus,
            name="availability_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=AvailabilityStatus.OFFLINE,
        nullable=False,
    )

    # Cache of sum(CREDIT) - sum(DEBIT) over wallet_transactions.
    # Only changed through atomic increments (WalletService.apply_entry).
    wallet_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_deliveries = Column(Integer, nullable=False, default=0)
    rating = Column(Numeric(3, 2), nullable=False, default=Decimal("0.00"))

    # Last reported position, used for the rider pin and ETA
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
