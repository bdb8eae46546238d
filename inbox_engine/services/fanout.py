"""
Post-commit side effects of a newly recorded inbound message.

The message row is the source of truth. Fan-out runs after the inbound
transaction commits, each step in its own commit, and is best-effort: a failed
step is logged and rolled back, and the remaining steps still run. A crash
between commit and fan-out loses at most these derived records.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.schemas.inbound import InboundMessage, InboundResult
from inbox_engine.services.audit import AuditActor, record_audit_event
from inbox_engine.services.automation import stop_lead_automation
from inbox_engine.services.outbox import MESSAGE_RECEIVED, enqueue_outbox_event, notify_outbox

logger = logging.getLogger(__name__)


async def _run_step(
    db: AsyncSession,
    step: str,
    result: InboundResult,
    fn: Callable[..., Awaitable[Any]],
    *args,
    **kwargs,
) -> Any:
    try:
        value = await fn(db, *args, **kwargs)
        await db.commit()
        return value
    except Exception:
        await db.rollback()
        logger.warning(
            "Inbound fan-out step %s failed", step,
            exc_info=True,
            extra={"message_id": str(result.message_id), "thread_id": str(result.thread_id)},
        )
        return None


async def fan_out_inbound(
    db: AsyncSession,
    result: InboundResult,
    inbound: InboundMessage,
    now: datetime,
) -> None:
    """Automation reset, outbox event and audit entry for a non-duplicate message."""
    if result.duplicate:
        return

    if result.lead_id:
        await _run_step(db, "stop_lead_automation", result, stop_lead_automation, result.lead_id, now)

    event = await _run_step(
        db, "enqueue_outbox", result, enqueue_outbox_event,
        MESSAGE_RECEIVED,
        {
            "messageId": str(result.message_id),
            "threadId": str(result.thread_id),
            "channel": inbound.channel,
        },
    )
    if event is not None:
        await notify_outbox(str(event.id))

    await _run_step(
        db, "audit", result, record_audit_event,
        action=MESSAGE_RECEIVED,
        entity_type="conversation_message",
        entity_id=str(result.message_id),
        actor=AuditActor(type="system", label=inbound.provider or "inbound"),
        meta={
            "threadId": str(result.thread_id),
            "channel": inbound.channel,
            "from": inbound.from_address,
            "to": inbound.to_address,
        },
    )
