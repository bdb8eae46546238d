"""
Contact resolution - find or create the Contact an inbound message came from.

Resolution is an ordered list of named strategies per channel. Each strategy
returns matched / no_match / skip and is tried in turn by resolve_contact():

  sms, call  sender_phone
  email      sender_email
  dm         participant_history, hint_email, hint_phone, inferred_email, inferred_phone
  web        hint_email, hint_phone, inferred_email, inferred_phone

On a full miss a contact is created, seeded with whatever identity is known.
On a hit (or after creation) the contact is enriched: missing email/phone are
filled, a placeholder name is replaced by a learned one, and a learned postal
code is appended to the CRM pipeline notes. Populated fields are never
overwritten, and a uniqueness conflict during enrichment is swallowed.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.exceptions import ContactCreateFailedError, ContactMissingError
from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import ConversationParticipant, ConversationThread
from inbox_engine.models.crm_pipeline import CrmPipeline
from inbox_engine.services.fact_extraction import ExtractedFacts
from inbox_engine.services.identity import PHONE_CHANNELS, SenderIdentity
from inbox_engine.utils.logging import mask_address
from inbox_engine.utils.names import (
    is_meaningful_name,
    is_placeholder_name,
    join_name,
    split_full_name,
)
from inbox_engine.utils.phone import NormalizedPhone

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    SKIP = "skip"  # the strategy's input is absent


@dataclass(frozen=True)
class StrategyResult:
    outcome: Outcome
    contact: Optional[Contact] = None

    @classmethod
    def matched(cls, contact: Contact) -> "StrategyResult":
        return cls(Outcome.MATCHED, contact)

    @classmethod
    def no_match(cls) -> "StrategyResult":
        return cls(Outcome.NO_MATCH)

    @classmethod
    def skip(cls) -> "StrategyResult":
        return cls(Outcome.SKIP)


@dataclass(frozen=True)
class ResolutionContext:
    """Everything known about the sender of one inbound delivery."""
    sender: SenderIdentity
    hint_email: Optional[str] = None
    hint_phone: Optional[NormalizedPhone] = None
    facts: ExtractedFacts = field(default_factory=ExtractedFacts)

    @property
    def channel(self) -> str:
        return self.sender.channel

    @property
    def known_email(self) -> Optional[str]:
        return self.sender.email or self.hint_email or self.facts.email

    @property
    def known_phone(self) -> Optional[NormalizedPhone]:
        return self.sender.phone or self.hint_phone or self.facts.phone

    @property
    def name_candidate(self) -> Optional[str]:
        """Name for a brand-new contact: what the channel said, else what the text said."""
        return self.sender.name_hint or self.facts.name

    @property
    def learned_name(self) -> Optional[str]:
        """Name to merge onto a placeholder: a self-introduction beats a channel label."""
        return self.facts.name or self.sender.name_hint


@dataclass
class ContactResolution:
    contact: Contact
    created: bool
    strategy: Optional[str] = None  # name of the matching strategy, None when created


StrategyFn = Callable[[AsyncSession, ResolutionContext], Awaitable[StrategyResult]]


# --- lookups ---------------------------------------------------------------

async def find_contact_by_phone(db: AsyncSession, phone: NormalizedPhone) -> Optional[Contact]:
    """Match on the canonical form or on the raw form a legacy row stored."""
    result = await db.execute(
        select(Contact)
        .where(or_(Contact.phone_e164 == phone.e164, Contact.phone == phone.raw))
        .order_by(Contact.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_contact_by_email(db: AsyncSession, email: str) -> Optional[Contact]:
    result = await db.execute(select(Contact).where(Contact.email == email).limit(1))
    return result.scalar_one_or_none()


async def find_contact_by_dm_handle(db: AsyncSession, handle: str) -> Optional[Contact]:
    """Contact previously seen behind this DM handle, most recently active thread first."""
    result = await db.execute(
        select(Contact)
        .join(ConversationParticipant, ConversationParticipant.contact_id == Contact.id)
        .join(ConversationThread, ConversationParticipant.thread_id == ConversationThread.id)
        .where(
            ConversationParticipant.participant_type == "contact",
            ConversationParticipant.external_address == handle,
            ConversationThread.channel == "dm",
        )
        .order_by(ConversationThread.updated_at.desc(), ConversationThread.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


# --- strategies -------------------------------------------------------------

async def _by_phone(db: AsyncSession, phone: Optional[NormalizedPhone]) -> StrategyResult:
    if phone is None:
        return StrategyResult.skip()
    contact = await find_contact_by_phone(db, phone)
    return StrategyResult.matched(contact) if contact else StrategyResult.no_match()


async def _by_email(db: AsyncSession, email: Optional[str]) -> StrategyResult:
    if not email:
        return StrategyResult.skip()
    contact = await find_contact_by_email(db, email)
    return StrategyResult.matched(contact) if contact else StrategyResult.no_match()


async def sender_phone(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_phone(db, ctx.sender.phone)


async def sender_email(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_email(db, ctx.sender.email)


async def participant_history(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    if ctx.channel != "dm" or not ctx.sender.address:
        return StrategyResult.skip()
    contact = await find_contact_by_dm_handle(db, ctx.sender.address)
    return StrategyResult.matched(contact) if contact else StrategyResult.no_match()


async def hint_email(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_email(db, ctx.hint_email)


async def hint_phone(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_phone(db, ctx.hint_phone)


async def inferred_email(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_email(db, ctx.facts.email)


async def inferred_phone(db: AsyncSession, ctx: ResolutionContext) -> StrategyResult:
    return await _by_phone(db, ctx.facts.phone)


STRATEGIES: dict[str, StrategyFn] = {
    "sender_phone": sender_phone,
    "sender_email": sender_email,
    "participant_history": participant_history,
    "hint_email": hint_email,
    "hint_phone": hint_phone,
    "inferred_email": inferred_email,
    "inferred_phone": inferred_phone,
}

_TEXT_IDENTITY_CHAIN = ("hint_email", "hint_phone", "inferred_email", "inferred_phone")

CHANNEL_POLICIES: dict[str, tuple[str, ...]] = {
    "sms": ("sender_phone",),
    "call": ("sender_phone",),
    "email": ("sender_email",),
    "dm": ("participant_history",) + _TEXT_IDENTITY_CHAIN,
    "web": _TEXT_IDENTITY_CHAIN,
}


async def run_strategies(
    db: AsyncSession, ctx: ResolutionContext
) -> tuple[Optional[Contact], Optional[str]]:
    """Try the channel's strategies in order; first match wins."""
    for name in CHANNEL_POLICIES.get(ctx.channel, ()):
        result = await STRATEGIES[name](db, ctx)
        if result.outcome is Outcome.MATCHED:
            return result.contact, name
    return None, None


# --- creation ---------------------------------------------------------------

def _source_for(channel: str) -> str:
    if channel in PHONE_CHANNELS or channel == "email":
        return channel
    return "inbound"


async def create_contact(db: AsyncSession, ctx: ResolutionContext, now: datetime) -> ContactResolution:
    """
    Insert a contact seeded with the known identity.

    Runs in a SAVEPOINT: if a concurrent delivery created the same identity
    first, the unique constraint fires and the winner is resolved instead.
    """
    name = split_full_name(ctx.name_candidate)
    phone = ctx.known_phone
    contact = Contact(
        first_name=name.first_name,
        last_name=name.last_name,
        email=ctx.known_email,
        phone=phone.raw if phone else None,
        phone_e164=phone.e164 if phone else None,
        source=_source_for(ctx.channel),
        created_at=now,
        updated_at=now,
    )

    try:
        async with db.begin_nested():
            db.add(contact)
    except IntegrityError:
        logger.info(
            "Contact create collided for %s sender %s, re-resolving",
            ctx.channel, mask_address(ctx.sender.address),
            extra={"channel": ctx.channel},
        )
        winner, strategy = await run_strategies(db, ctx)
        if winner is None:
            raise ContactCreateFailedError()
        return ContactResolution(contact=winner, created=False, strategy=strategy)

    if contact.id is None:
        raise ContactCreateFailedError()

    logger.info(
        "Contact created from %s sender %s", ctx.channel, mask_address(ctx.sender.address),
        extra={"contact_id": str(contact.id), "channel": ctx.channel},
    )
    return ContactResolution(contact=contact, created=True)


# --- enrichment -------------------------------------------------------------

def _identity_updates(contact: Contact, ctx: ResolutionContext) -> dict:
    """Fields to fill on an existing contact. Populated fields are left alone."""
    updates: dict = {}

    email = ctx.known_email
    if email and not contact.email:
        updates["email"] = email

    phone = ctx.known_phone
    if phone and not contact.phone_e164 and not contact.phone:
        updates["phone"] = phone.raw
        updates["phone_e164"] = phone.e164

    candidate = ctx.learned_name
    if (
        candidate
        and is_meaningful_name(candidate)
        and is_placeholder_name(contact.first_name, contact.last_name)
    ):
        name = split_full_name(candidate)
        if (name.first_name, name.last_name) != (contact.first_name, contact.last_name):
            updates["first_name"] = name.first_name
            updates["last_name"] = name.last_name

    return updates


async def _apply_updates(db: AsyncSession, contact: Contact, updates: dict, now: datetime) -> bool:
    """Apply updates in a SAVEPOINT. A uniqueness conflict leaves the contact as it was."""
    # The rolled-back savepoint expires the contact; read the id while it is loaded
    contact_id = contact.id
    try:
        async with db.begin_nested():
            for key, value in updates.items():
                setattr(contact, key, value)
            contact.updated_at = now
    except IntegrityError:
        logger.info(
            "Contact backfill skipped, identity already belongs to another contact (%s)",
            ", ".join(sorted(updates)),
            extra={"contact_id": str(contact_id)},
        )
        await db.refresh(contact)
        return False
    return True


async def _sync_participant_names(db: AsyncSession, contact: Contact) -> None:
    display_name = join_name(contact.first_name, contact.last_name)
    if not display_name:
        return
    await db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.participant_type == "contact",
            ConversationParticipant.contact_id == contact.id,
        )
        .values(display_name=display_name)
    )


async def record_postal_code(
    db: AsyncSession, contact: Contact, postal_code: str, now: datetime
) -> None:
    """Append 'ZIP: <code>' to the contact's pipeline notes unless already noted."""
    pipeline = (await db.execute(
        select(CrmPipeline).where(CrmPipeline.contact_id == contact.id).limit(1)
    )).scalar_one_or_none()

    line = f"ZIP: {postal_code}"
    contact_id = contact.id
    if pipeline is None:
        try:
            async with db.begin_nested():
                db.add(CrmPipeline(
                    contact_id=contact_id,
                    stage="new",
                    notes=line,
                    created_at=now,
                    updated_at=now,
                ))
        except IntegrityError:
            logger.debug("Pipeline row for contact %s created concurrently", str(contact_id)[:8])
        return

    if pipeline.notes and postal_code in pipeline.notes:
        return
    pipeline.notes = f"{pipeline.notes}\n{line}" if pipeline.notes else line
    pipeline.updated_at = now


async def enrich_contact(
    db: AsyncSession, contact: Contact, ctx: ResolutionContext, now: datetime
) -> Contact:
    """Merge newly discovered identity onto a resolved contact without overwriting."""
    updates = _identity_updates(contact, ctx)
    if updates:
        applied = await _apply_updates(db, contact, updates, now)
        if applied and "first_name" in updates:
            await _sync_participant_names(db, contact)

    if ctx.facts.postal_code:
        await record_postal_code(db, contact, ctx.facts.postal_code, now)

    return contact


# --- entry point --------------------------------------------------------------

async def resolve_contact(db: AsyncSession, ctx: ResolutionContext, now: datetime) -> ContactResolution:
    """Find or create the contact behind an inbound delivery, then enrich it."""
    contact, strategy = await run_strategies(db, ctx)
    if contact is not None:
        resolution = ContactResolution(contact=contact, created=False, strategy=strategy)
        logger.debug(
            "Contact matched via %s", strategy,
            extra={"contact_id": str(contact.id), "channel": ctx.channel},
        )
    else:
        resolution = await create_contact(db, ctx, now)

    if resolution.contact is None:
        raise ContactMissingError()

    await enrich_contact(db, resolution.contact, ctx, now)
    return resolution
