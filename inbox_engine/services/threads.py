"""
Thread and participant lifecycle for inbound traffic.

Thread status on inbound:
  open    -> open
  pending -> open   (a reply always needs attention again)
  closed  -> open   (reopened, never duplicated)
Inbound never moves a thread to pending or closed; operators and automation do.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.exceptions import ThreadCreateFailedError
from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import (
    OPEN_THREAD_STATUSES,
    ConversationParticipant,
    ConversationThread,
)
from inbox_engine.models.lead import Lead
from inbox_engine.utils.names import join_name

logger = logging.getLogger(__name__)


async def find_latest_lead(db: AsyncSession, contact_id: uuid.UUID) -> Optional[Lead]:
    result = await db.execute(
        select(Lead)
        .where(Lead.contact_id == contact_id)
        .order_by(Lead.updated_at.desc(), Lead.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def lock_contact(db: AsyncSession, contact_id: uuid.UUID) -> None:
    """
    Row-lock the contact until the transaction ends.

    Serializes thread find-or-create for one contact even when the Redis
    sender lock was skipped or timed out.
    """
    await db.execute(
        select(Contact.id).where(Contact.id == contact_id).with_for_update()
    )


async def find_current_thread(
    db: AsyncSession,
    contact_id: uuid.UUID,
    channel: str,
    include_closed: bool = True,
) -> Optional[ConversationThread]:
    """Most recently active thread for (contact, channel)."""
    query = select(ConversationThread).where(
        ConversationThread.contact_id == contact_id,
        ConversationThread.channel == channel,
    )
    if not include_closed:
        query = query.where(ConversationThread.status.in_(OPEN_THREAD_STATUSES))
    result = await db.execute(
        query.order_by(
            ConversationThread.last_message_at.desc().nulls_last(),
            ConversationThread.updated_at.desc(),
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_thread(
    db: AsyncSession,
    contact: Contact,
    channel: str,
    now: datetime,
    subject: Optional[str] = None,
    reopen_closed: bool = True,
) -> ConversationThread:
    """
    Find the current thread for (contact, channel) and make sure it is open,
    or create one pre-linked to the contact's most recent lead.

    With reopen_closed=False closed threads are ignored and a fresh thread
    is started instead.
    """
    await lock_contact(db, contact.id)
    thread = await find_current_thread(db, contact.id, channel, include_closed=reopen_closed)

    if thread is not None:
        if thread.status != "open":
            logger.info(
                "Reopening %s thread on inbound (was %s)", channel, thread.status,
                extra={"thread_id": str(thread.id), "channel": channel},
            )
            thread.status = "open"
            thread.updated_at = now
        return thread

    lead = await find_latest_lead(db, contact.id)
    thread = ConversationThread(
        contact_id=contact.id,
        lead_id=lead.id if lead else None,
        property_id=lead.property_id if lead else None,
        channel=channel,
        status="open",
        subject=subject,
        created_at=now,
        updated_at=now,
    )
    db.add(thread)
    await db.flush()

    if thread.id is None:
        raise ThreadCreateFailedError()

    logger.info(
        "Thread created for %s%s", channel, " (linked to lead)" if lead else "",
        extra={"thread_id": str(thread.id), "contact_id": str(contact.id), "channel": channel},
    )
    return thread


async def find_contact_participant(
    db: AsyncSession, thread_id: uuid.UUID, contact_id: uuid.UUID
) -> Optional[ConversationParticipant]:
    result = await db.execute(
        select(ConversationParticipant).where(
            ConversationParticipant.thread_id == thread_id,
            ConversationParticipant.participant_type == "contact",
            ConversationParticipant.contact_id == contact_id,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def ensure_participant(
    db: AsyncSession,
    thread: ConversationThread,
    contact: Contact,
    external_address: Optional[str],
    now: datetime,
) -> ConversationParticipant:
    """The contact's participant row in this thread; backfills a missing external address."""
    thread_id, contact_id = thread.id, contact.id
    participant = await find_contact_participant(db, thread_id, contact_id)

    if participant is None:
        participant = ConversationParticipant(
            thread_id=thread_id,
            participant_type="contact",
            contact_id=contact_id,
            display_name=join_name(contact.first_name, contact.last_name) or "Contact",
            external_address=external_address or None,
            created_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(participant)
        except IntegrityError:
            # Another delivery for the same contact added it first
            participant = await find_contact_participant(db, thread_id, contact_id)
            if participant is None:
                raise
        else:
            return participant

    if not participant.external_address and external_address:
        participant.external_address = external_address

    return participant
