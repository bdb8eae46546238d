"""
Outbox - durable requests for downstream work (notifications, delivery).

Events are rows in outbox_events; consumers poll for unprocessed rows. After a
commit the producer also pushes the event id to Redis so a consumer blocked on
BRPOP can wake immediately instead of waiting for its next poll.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

OUTBOX_NOTIFY_KEY = "inbox:outbox_notify"

MESSAGE_RECEIVED = "message.received"


async def enqueue_outbox_event(
    db: AsyncSession,
    event_type: str,
    payload: Optional[dict] = None,
) -> OutboxEvent:
    """Add an outbox event to the session. The caller commits."""
    event = OutboxEvent(type=event_type, payload=payload or {})
    db.add(event)
    await db.flush()

    logger.info("Outbox event enqueued: type=%s id=%s", event_type, str(event.id)[:8])
    return event


async def notify_outbox(event_id: str) -> None:
    """Wake outbox consumers (non-blocking, best-effort)."""
    try:
        from inbox_engine.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.lpush(OUTBOX_NOTIFY_KEY, event_id)
    except Exception as e:
        logger.debug("Failed to notify outbox consumers: %s", str(e))
