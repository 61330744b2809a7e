"""
Outbox Message Model - Transactional Outbox Pattern
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON

from app.db.database import Base


class MessageChannel(str, enum.Enum):
    PUSH = "push"  # mobile push to a worker or store owner
    OPS = "ops"    # operations alert webhook


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Notifications queued after a business commit, delivered by the Celery worker"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    channel = Column(
        SQLEnum(MessageChannel, name="message_channel", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    recipient = Column(String(255), nullable=False)  # device token or ops route

    message_type = Column(String(50), nullable=False)  # e.g. "order_accepted", "negative_balance"
    payload = Column(JSON, nullable=False)

    status = Column(
        SQLEnum(MessageStatus, name="message_status", values_callable=lambda x: [e.value for e in x]),
        default=MessageStatus.PENDING,
        index=True,
    )
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    # Error tracking
    last_error = Column(String(1000), nullable=True)
