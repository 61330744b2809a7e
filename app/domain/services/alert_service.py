"""
Alert Service - Real-time worker status events

Publishes worker online/offline events to Redis Pub/Sub for the dispatch
console and keeps a short history list in Redis so a console that connects
late can catch up.

Event types:
- worker_online: worker started a shift
- worker_offline: worker ended a shift
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

_HISTORY_SUFFIX = "history"
_MAX_HISTORY_SIZE = 100


class WorkerEventType(str, enum.Enum):
    WORKER_ONLINE = "worker_online"
    WORKER_OFFLINE = "worker_offline"


def channel_name() -> str:
    return settings.WORKER_STATUS_CHANNEL


def _history_key() -> str:
    return f"{settings.WORKER_STATUS_CHANNEL}:{_HISTORY_SUFFIX}"


async def publish_worker_status(
    worker_id: int,
    is_online: bool,
    extra: Optional[dict[str, Any]] = None,
) -> bool:
    """Publish {worker_id, is_online} and append it to the history list.

    Failures are logged and swallowed; returns whether the event went out.
    """
    event_type = WorkerEventType.WORKER_ONLINE if is_online else WorkerEventType.WORKER_OFFLINE
    try:
        payload = {
            "type": event_type.value,
            "worker_id": worker_id,
            "is_online": is_online,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if extra:
            payload.update(extra)
        message = json.dumps(payload, default=str)

        redis = await get_redis()
        await redis.publish(channel_name(), message)
        history_key = _history_key()
        await redis.lpush(history_key, message)
        await redis.ltrim(history_key, 0, _MAX_HISTORY_SIZE - 1)

        logger.info(
            "Worker status published",
            extra_data={"worker_id": worker_id, "is_online": is_online},
        )
        return True
    except Exception as e:
        logger.error(
            "Failed to publish worker status",
            extra_data={
                "worker_id": worker_id,
                "is_online": is_online,
                "error": str(e),
            },
            exc_info=True,
        )
        return False


async def get_status_history(limit: int = 50) -> list[dict[str, Any]]:
    """Latest worker status events, newest first. Empty list if Redis is unavailable."""
    try:
        redis = await get_redis()
        raw_messages = await redis.lrange(_history_key(), 0, limit - 1)
        events = []
        for raw in raw_messages:
            try:
                events.append(json.loads(raw))
            except (json.JSONDecodeError, TypeError):
                continue
        return events
    except Exception as e:
        logger.error(
            "Failed to read worker status history",
            extra_data={"error": str(e)},
            exc_info=True,
        )
        return []
