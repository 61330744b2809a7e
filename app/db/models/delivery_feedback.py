"""
Delivery Feedback Model - Customer rating of a completed delivery
"""
from datetime import datetime
from sqlalchemy import Column, Integer, SmallInteger, DateTime, ForeignKey, JSON, Text, UniqueConstraint

from app.db.database import Base


class DeliveryFeedback(Base):
    """Customer feedback; one per (order, worker)"""

    __tablename__ = "delivery_feedback"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=True)

    rating = Column(SmallInteger, nullable=False)  # 1..5
    tags = Column(JSON, nullable=False, default=list)
    comments = Column(Text, nullable=True)

    submitted_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", "worker_id", name="uq_feedback_order_worker"),
    )
