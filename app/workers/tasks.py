"""
Celery Tasks for Async Message Processing

Implements the worker side of the Transactional Outbox pattern: pending
outbox rows are delivered to the push gateway (store-owner notifications)
or to the ops webhook (wallet alerts). Also hosts the periodic wallet
reconciliation and outbox cleanup.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select, delete

from app.workers.celery_app import celery_app
from app.core.circuit_breaker import (
    get_ops_webhook_circuit_breaker,
    get_push_gateway_circuit_breaker,
)
from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError, ErrorCode, ExternalServiceException
from app.core.logging import get_logger, log_async_operation, set_correlation_id
from app.db.database import get_task_session
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.outbox_message import OutboxMessage, MessageChannel, MessageStatus
from app.domain.services.outbox_service import OutboxService
from app.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

_HTTP_TIMEOUT_SECONDS = 15.0
_DEFERRED = "Deferred: circuit open"


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop; drop it before closing
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _send_push(device_token: str, message_type: str, payload: dict) -> bool:
    """Send a push notification through the gateway with circuit breaker protection"""
    if not settings.PUSH_GATEWAY_URL:
        logger.warning("Push gateway URL not configured")
        return False

    circuit_breaker = get_push_gateway_circuit_breaker()

    async def _send():
        headers = {}
        if settings.PUSH_GATEWAY_TOKEN:
            headers["Authorization"] = f"Bearer {settings.PUSH_GATEWAY_TOKEN}"
        body = {
            "token": device_token,
            "title": payload.get("title", ""),
            "body": payload.get("body", ""),
            "data": {"type": message_type, **payload},
        }
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{settings.PUSH_GATEWAY_URL}/send",
                json=body,
                headers=headers,
                timeout=_HTTP_TIMEOUT_SECONDS,
            )
            if response.status_code >= 300:
                raise ExternalServiceException.from_response(
                    "push_gateway",
                    "send",
                    response,
                    error_code=ErrorCode.PUSH_GATEWAY_ERROR,
                )
            return True

    try:
        return await circuit_breaker.execute(_send)
    except CircuitBreakerOpenError:
        raise
    except Exception as e:
        logger.error(
            "Push send error",
            extra_data={"message_type": message_type, "error": str(e)},
            exc_info=True
        )
        return False


async def _send_ops_alert(message_type: str, payload: dict) -> bool:
    """Post an operations alert to the ops webhook"""
    if not settings.OPS_WEBHOOK_URL:
        logger.warning("Ops webhook URL not configured")
        return False

    circuit_breaker = get_ops_webhook_circuit_breaker()

    async def _send():
        body = {"type": message_type, "text": payload.get("text", ""), "data": payload}
        async with httpx.AsyncClient() as client:
            response = await client.post(
                settings.OPS_WEBHOOK_URL,
                json=body,
                timeout=_HTTP_TIMEOUT_SECONDS,
            )
            if response.status_code >= 300:
                raise ExternalServiceException.from_response(
                    "ops_webhook",
                    "post",
                    response,
                    error_code=ErrorCode.OPS_WEBHOOK_ERROR,
                )
            return True

    try:
        return await circuit_breaker.execute(_send)
    except CircuitBreakerOpenError:
        raise
    except Exception as e:
        logger.error(
            "Ops alert send error",
            extra_data={"message_type": message_type, "error": str(e)},
            exc_info=True
        )
        return False


async def _process_single_message(message: OutboxMessage) -> tuple:
    """Process a single outbox message"""
    async with get_task_session() as db:
        outbox_service = OutboxService(db)

        await outbox_service.mark_as_processing(message.id)

        try:
            payload = message.payload or {}
            if message.channel == MessageChannel.PUSH:
                success = await _send_push(message.recipient, message.message_type, payload)
            else:
                success = await _send_ops_alert(message.message_type, payload)

            if success:
                await outbox_service.mark_as_sent(message.id)
                return True, "Message sent successfully"

            await outbox_service.mark_as_failed(message.id, "Send failed")
            return False, "Send failed"

        except CircuitBreakerOpenError as e:
            retry_after = e.details.get("retry_after_seconds") or 0.0
            await outbox_service.defer(message.id, retry_after, str(e))
            logger.info(
                "Outbox message deferred, sender circuit open",
                extra_data={"message_id": message.id, "retry_after_seconds": retry_after}
            )
            return False, _DEFERRED

        except Exception as e:
            await outbox_service.mark_as_failed(message.id, str(e))
            return False, str(e)


@celery_app.task(name="app.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """
    Process pending messages from the outbox.
    This task runs periodically to ensure reliable message delivery.
    """

    async def _process():
        async with get_task_session() as db:
            outbox_service = OutboxService(db)
            messages = await outbox_service.get_pending_messages(limit=50)

        results = []
        for message in messages:
            success, result = await _process_single_message(message)
            results.append({
                "message_id": message.id,
                "success": success,
                "result": result
            })

        deferred = sum(1 for r in results if r["result"] == _DEFERRED)
        if deferred:
            logger.warning(
                "Outbox batch held back by open circuits",
                extra_data={
                    "deferred": deferred,
                    "breakers": [
                        get_push_gateway_circuit_breaker().snapshot(),
                        get_ops_webhook_circuit_breaker().snapshot(),
                    ],
                }
            )
        return results

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.send_message")
def send_message(message_id: int):
    """Send a specific message by ID"""

    async def _send():
        async with get_task_session() as db:
            result = await db.execute(
                select(OutboxMessage).where(OutboxMessage.id == message_id)
            )
            message = result.scalar_one_or_none()

        if not message:
            return {"error": "Message not found"}

        success, result = await _process_single_message(message)
        return {"success": success, "result": result}

    return run_async(_send())


@log_async_operation("reconcile_wallets")
async def _reconcile_all_wallets() -> dict:
    async with get_task_session() as db:
        result = await db.execute(
            select(DeliveryWorker.id)
            .where(DeliveryWorker.is_deleted.is_(False))
            .order_by(DeliveryWorker.id)
        )
        worker_ids = list(result.scalars().all())

        wallet_service = WalletService(db)
        repaired = []
        for worker_id in worker_ids:
            outcome = await wallet_service.reconcile_wallet(worker_id)
            if outcome["repaired"]:
                repaired.append(worker_id)

    if repaired:
        logger.warning(
            "Wallet reconciliation repaired drifted balances",
            extra_data={"checked": len(worker_ids), "repaired_worker_ids": repaired}
        )
    else:
        logger.info("Wallet reconciliation clean", extra_data={"checked": len(worker_ids)})
    return {"checked": len(worker_ids), "repaired": len(repaired)}


@celery_app.task(name="app.workers.tasks.reconcile_wallets")
def reconcile_wallets():
    """Rewrite cached wallet balances that drifted from the ledger"""
    return run_async(_reconcile_all_wallets())


@log_async_operation("cleanup_sent_messages")
async def _cleanup_sent_messages(days: int) -> dict:
    async with get_task_session() as db:
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await db.execute(
            delete(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.SENT,
                OutboxMessage.processed_at < cutoff
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return {"deleted": result.rowcount or 0}


@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int | None = None):
    """Delete SENT outbox messages older than the retention window"""
    return run_async(_cleanup_sent_messages(days or settings.OUTBOX_RETENTION_DAYS))
