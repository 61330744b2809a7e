"""
Store Model - Pickup locations (owned by the catalog service, read here)
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Float

from app.db.database import Base


class Store(Base):
    """Store whose owner is notified when a worker accepts an order"""

    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    owner_name = Column(String(150), nullable=True)
    owner_phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)

    # Push token of the store owner's device
    device_token = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
