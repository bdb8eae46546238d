"""
Inbound message ingestion - the single entry point every channel webhook calls.

record_inbound_message() runs, in one transaction:
  1. idempotency check on provider_message_id (short-circuits on a replay)
  2. sender normalization (sms/call senders must be phone numbers)
  3. contact resolution and enrichment
  4. thread resolution (reopen or create) and participant upsert
  5. message insert, delivery event, thread preview
and then, after commit, the best-effort fan-out (automation stop, outbox
event, audit entry).

Concurrent deliveries from one sender are serialized with a Redis lock when
Redis is available; unique constraints are the final backstop either way.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.config import get_settings
from inbox_engine.schemas.inbound import InboundMessage, InboundResult
from inbox_engine.services.contact_resolver import ResolutionContext, resolve_contact
from inbox_engine.services.fact_extraction import (
    ExtractedFacts,
    FactExtractor,
    default_extractor,
)
from inbox_engine.services.fanout import fan_out_inbound
from inbox_engine.services.identity import TEXT_IDENTITY_CHANNELS, normalize_sender
from inbox_engine.services.messages import (
    find_duplicate,
    insert_inbound_message,
    resolve_body,
    touch_thread,
)
from inbox_engine.services.threads import ensure_participant, resolve_thread
from inbox_engine.utils.email_address import normalize_email
from inbox_engine.utils.locks import LockTimeoutError, sender_lock
from inbox_engine.utils.logging import mask_address
from inbox_engine.utils.phone import parse_phone

logger = logging.getLogger(__name__)


def _extract_facts(
    inbound: InboundMessage, extractor: Optional[FactExtractor]
) -> ExtractedFacts:
    """Body facts, only for handle-based channels with no structured hints."""
    if inbound.channel not in TEXT_IDENTITY_CHANNELS:
        return ExtractedFacts()
    if inbound.contact_phone or inbound.contact_email:
        return ExtractedFacts()
    return (extractor or default_extractor()).extract(inbound.body)


async def _record(
    db: AsyncSession,
    inbound: InboundMessage,
    extractor: Optional[FactExtractor],
    now: datetime,
) -> InboundResult:
    settings = get_settings()

    duplicate = await find_duplicate(db, inbound.provider_message_id)
    if duplicate is not None:
        return duplicate

    sender = normalize_sender(
        inbound.channel,
        inbound.from_address,
        sender_name=inbound.sender_name,
        default_region=settings.default_phone_region,
    )
    hint_email = hint_phone = None
    if inbound.channel in TEXT_IDENTITY_CHANNELS:
        hint_email = normalize_email(inbound.contact_email)
        hint_phone = parse_phone(inbound.contact_phone, settings.default_phone_region)
    ctx = ResolutionContext(
        sender=sender,
        hint_email=hint_email,
        hint_phone=hint_phone,
        facts=_extract_facts(inbound, extractor),
    )

    resolution = await resolve_contact(db, ctx, now)
    contact = resolution.contact

    thread = await resolve_thread(
        db,
        contact,
        inbound.channel,
        now,
        subject=inbound.subject,
        reopen_closed=settings.inbox_reopen_closed_threads,
    )
    participant = await ensure_participant(db, thread, contact, sender.address or None, now)

    body = resolve_body(inbound.body, inbound.media_urls)
    message = await insert_inbound_message(db, thread, participant, inbound, sender.address, body)
    touch_thread(thread, body, inbound.received_at, settings.inbox_preview_length)

    await db.flush()
    return InboundResult(
        thread_id=thread.id,
        message_id=message.id,
        contact_id=contact.id,
        lead_id=thread.lead_id,
        duplicate=False,
    )


async def _record_in_transaction(
    db: AsyncSession,
    inbound: InboundMessage,
    extractor: Optional[FactExtractor],
    now: datetime,
) -> InboundResult:
    try:
        result = await _record(db, inbound, extractor, now)
        await db.commit()
        return result
    except IntegrityError:
        await db.rollback()
        # A concurrent delivery of the same provider message won the insert
        winner = await find_duplicate(db, inbound.provider_message_id)
        if winner is None:
            raise
        logger.info(
            "Concurrent duplicate inbound %s resolved to existing message",
            inbound.channel,
            extra={"message_id": str(winner.message_id), "channel": inbound.channel},
        )
        return winner
    except Exception:
        await db.rollback()
        raise


async def record_inbound_message(
    db: AsyncSession,
    inbound: InboundMessage,
    *,
    extractor: Optional[FactExtractor] = None,
) -> InboundResult:
    """
    Record one inbound delivery. Safe to call again with the same
    provider_message_id: the replay returns the original ids with duplicate=True.

    Raises InboundMessageError subclasses on fatal conditions; nothing is
    written in that case.
    """
    settings = get_settings()
    start = time.monotonic()
    now = datetime.now(timezone.utc)

    try:
        async with sender_lock(
            inbound.channel,
            inbound.from_address,
            ttl=settings.sender_lock_ttl_seconds,
            wait=settings.sender_lock_wait_seconds,
        ):
            result = await _record_in_transaction(db, inbound, extractor, now)
    except LockTimeoutError:
        logger.warning(
            "Sender lock busy for %s %s, recording without it",
            inbound.channel, mask_address(inbound.from_address),
            extra={"channel": inbound.channel, "provider": inbound.provider},
        )
        result = await _record_in_transaction(db, inbound, extractor, now)

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Inbound %s from %s recorded%s (%dms)",
        inbound.channel, mask_address(inbound.from_address),
        " as duplicate" if result.duplicate else "", duration_ms,
        extra={
            "thread_id": str(result.thread_id),
            "message_id": str(result.message_id),
            "contact_id": str(result.contact_id) if result.contact_id else None,
            "channel": inbound.channel,
            "provider": inbound.provider,
        },
    )

    if not result.duplicate:
        await fan_out_inbound(db, result, inbound, now)

    return result
