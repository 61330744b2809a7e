"""
Outbox Service - Transactional Outbox Pattern for Async Messaging

Notifications are written as outbox rows and delivered later by the Celery
worker (app.workers.tasks.process_outbox_messages), so a slow or failing
push gateway never blocks or rolls back an order or wallet operation.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from app.core.config import settings
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.order import Order, OrderStatus
from app.db.models.outbox_message import OutboxMessage, MessageChannel, MessageStatus
from app.db.models.store import Store

OPS_RECIPIENT = "ops"

# Store-owner facing text per stored status
_STATUS_MESSAGES = {
    OrderStatus.ON_THE_WAY: "Order {number} has been picked up and is out for delivery.",
    OrderStatus.OUT_FOR_DELIVERY: "Order {number} is on the way to the customer.",
    OrderStatus.YOUR_DESTINATION: "Order {number} has reached the customer location.",
    OrderStatus.DELIVERED: (
        "Order {number} has been delivered successfully. "
        "Payment will be settled in next cycle."
    ),
}


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Calculate exponential backoff seconds with a hard upper bound.

        backoff = base_seconds * (2 ** retry_count)

    The result is capped at max_backoff_seconds and avoids computing huge
    powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # Smallest exponent whose multiplier reaches ceil(max/base)
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    backoff = base_seconds * (1 << retry_count)
    return min(backoff, max_backoff_seconds)


class OutboxService:
    """
    Service for managing outbox messages.

    queue_* methods only add rows to the session; the caller commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        channel: MessageChannel,
        recipient: str,
        message_type: str,
        payload: dict
    ) -> OutboxMessage:
        """Queue a single message for delivery"""
        message = OutboxMessage(
            channel=channel,
            recipient=recipient,
            message_type=message_type,
            payload=payload,
            status=MessageStatus.PENDING
        )
        self.db.add(message)
        return message

    async def queue_order_accepted(
        self, order: Order, worker: DeliveryWorker, store: Store | None
    ) -> List[OutboxMessage]:
        """Tell the store owner a rider is on the way"""
        if not store or not store.device_token:
            return []

        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "worker_id": worker.id,
            "title": "Delivery partner assigned",
            "body": (
                f"{worker.full_name or 'A delivery partner'} accepted order "
                f"{order.order_number} and is heading to your store."
            ),
        }
        msg = await self.queue_message(
            channel=MessageChannel.PUSH,
            recipient=store.device_token,
            message_type="order_accepted",
            payload=payload,
        )
        return [msg]

    async def queue_order_status_update(
        self, order: Order, store: Store | None
    ) -> List[OutboxMessage]:
        """Status change notification for the store owner"""
        if not store or not store.device_token:
            return []

        status = OrderStatus(order.status)
        template = _STATUS_MESSAGES.get(status, "Order {number} delivery status: " + status.value)
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": status.value,
            "title": f"Order {status.value}",
            "body": template.format(number=order.order_number),
        }
        msg = await self.queue_message(
            channel=MessageChannel.PUSH,
            recipient=store.device_token,
            message_type="order_status_update",
            payload=payload,
        )
        return [msg]

    async def queue_negative_balance_alert(
        self, worker_id: int, balance: Decimal, settlement_id: Optional[int] = None
    ) -> OutboxMessage:
        """Ops alert for a wallet below the configured threshold"""
        payload = {
            "worker_id": worker_id,
            "wallet_balance": str(balance),
            "threshold": str(settings.NEGATIVE_BALANCE_ALERT_THRESHOLD),
            "settlement_id": settlement_id,
            "text": (
                f"Delivery worker {worker_id} wallet balance is {balance} {settings.CURRENCY} "
                f"(threshold {settings.NEGATIVE_BALANCE_ALERT_THRESHOLD})"
            ),
        }
        return await self.queue_message(
            channel=MessageChannel.OPS,
            recipient=OPS_RECIPIENT,
            message_type="negative_balance",
            payload=payload,
        )

    async def get_pending_messages(
        self, limit: int = 100, now: Optional[datetime] = None
    ) -> List[OutboxMessage]:
        """Pending messages whose retry time has come"""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(
                    OutboxMessage.next_retry_at.is_(None),
                    OutboxMessage.next_retry_at <= now,
                ),
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get_message(self, message_id: int) -> Optional[OutboxMessage]:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        """Mark message as being processed"""
        message = await self._get_message(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        """Mark message as successfully sent"""
        message = await self._get_message(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = datetime.utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Record a failed attempt; schedule a retry or give up after max_retries"""
        message = await self._get_message(message_id)
        if message:
            message.retry_count = (message.retry_count or 0) + 1
            message.last_error = error[:1000]

            if message.retry_count >= message.max_retries:
                message.status = MessageStatus.FAILED
            else:
                message.status = MessageStatus.PENDING
                backoff_seconds = _calculate_backoff_seconds(
                    message.retry_count,
                    base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                    max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
                )
                message.next_retry_at = datetime.utcnow() + timedelta(
                    seconds=backoff_seconds
                )

            await self.db.commit()

    async def defer(self, message_id: int, delay_seconds: float, reason: str) -> None:
        """Back to PENDING without using up a retry (the sender's breaker is open)"""
        message = await self._get_message(message_id)
        if message:
            message.status = MessageStatus.PENDING
            message.last_error = reason[:1000]
            message.next_retry_at = datetime.utcnow() + timedelta(seconds=max(delay_seconds, 1.0))
            await self.db.commit()
