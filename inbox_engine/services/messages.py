"""
Inbound message recording - the idempotent insert at the heart of ingestion.

provider_message_id is the idempotency key. A redelivered webhook finds the
original row and short-circuits; a concurrent redelivery that slips past the
lookup is stopped by the unique constraint on the column.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.exceptions import MessageCreateFailedError
from inbox_engine.models.conversation import (
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
    MessageDeliveryEvent,
)
from inbox_engine.schemas.inbound import InboundMessage, InboundResult

logger = logging.getLogger(__name__)

MEDIA_PLACEHOLDER = "Media message"
EMPTY_PLACEHOLDER = "Message received"
DEFAULT_PREVIEW_LENGTH = 140


def resolve_body(body: Optional[str], media_urls: list[str]) -> str:
    """Trimmed body, or a placeholder when the provider sent no text."""
    trimmed = (body or "").strip()
    if trimmed:
        return trimmed
    return MEDIA_PLACEHOLDER if media_urls else EMPTY_PLACEHOLDER


async def find_duplicate(db: AsyncSession, provider_message_id: Optional[str]) -> Optional[InboundResult]:
    """Result of an earlier recording of the same provider message, if any."""
    if not provider_message_id:
        return None

    row = (await db.execute(
        select(ConversationMessage.id, ConversationMessage.thread_id)
        .where(ConversationMessage.provider_message_id == provider_message_id)
        .limit(1)
    )).first()
    if row is None:
        return None

    message_id, thread_id = row
    thread = (await db.execute(
        select(ConversationThread.contact_id, ConversationThread.lead_id)
        .where(ConversationThread.id == thread_id)
        .limit(1)
    )).first()

    return InboundResult(
        thread_id=thread_id,
        message_id=message_id,
        contact_id=thread.contact_id if thread else None,
        lead_id=thread.lead_id if thread else None,
        duplicate=True,
    )


async def insert_inbound_message(
    db: AsyncSession,
    thread: ConversationThread,
    participant: ConversationParticipant,
    inbound: InboundMessage,
    from_address: str,
    body: str,
) -> ConversationMessage:
    """Insert the message row and its 'delivered' delivery event."""
    message = ConversationMessage(
        thread_id=thread.id,
        participant_id=participant.id,
        direction="inbound",
        channel=inbound.channel,
        subject=inbound.subject,
        body=body,
        media_urls=list(inbound.media_urls),
        delivery_status="delivered",
        provider=inbound.provider,
        provider_message_id=inbound.provider_message_id,
        from_address=from_address,
        to_address=inbound.to_address,
        received_at=inbound.received_at,
        extra_data=inbound.metadata,
        created_at=inbound.received_at,
    )
    db.add(message)
    await db.flush()

    if message.id is None:
        raise MessageCreateFailedError()

    db.add(MessageDeliveryEvent(
        message_id=message.id,
        status="delivered",
        detail="inbound",
        provider=inbound.provider,
        occurred_at=inbound.received_at,
    ))
    return message


def touch_thread(
    thread: ConversationThread,
    body: str,
    at: datetime,
    preview_length: int = DEFAULT_PREVIEW_LENGTH,
) -> None:
    """Refresh the thread's denormalized preview and activity timestamps."""
    thread.last_message_preview = body[:preview_length]
    thread.last_message_at = at
    thread.updated_at = at
