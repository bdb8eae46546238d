"""
Conversation models - threads, participants, messages and delivery events.

A thread groups every message between the business and one contact on one
channel. New inbound traffic is routed to the most recently active thread for
the (contact, channel) pair; a closed thread is reopened rather than duplicated.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from inbox_engine.database import Base

CHANNELS = ("sms", "email", "dm", "call", "web")
THREAD_STATUSES = ("open", "pending", "closed")
OPEN_THREAD_STATUSES = ("open", "pending")


class ConversationThread(Base):
    __tablename__ = "conversation_threads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contacts.id"), nullable=False
    )
    lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id")
    )
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    channel: Mapped[str] = mapped_column(String(10), nullable=False)  # sms, email, dm, call, web
    status: Mapped[str] = mapped_column(
        String(10), default="open", nullable=False
    )  # open, pending, closed
    subject: Mapped[Optional[str]] = mapped_column(Text)

    # Denormalized for inbox listing
    last_message_preview: Mapped[Optional[str]] = mapped_column(Text)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_threads_contact_channel", "contact_id", "channel"),
        Index("ix_threads_last_message_at", "last_message_at"),
        Index("ix_threads_lead_id", "lead_id"),
    )

    def __repr__(self) -> str:
        return f"<ConversationThread {self.channel} status={self.status}>"


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversation_threads.id"), nullable=False
    )
    participant_type: Mapped[str] = mapped_column(String(10), nullable=False)  # contact, team
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contacts.id")
    )
    team_member_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="Contact")
    external_address: Mapped[Optional[str]] = mapped_column(String(255))  # phone, email or DM handle

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "thread_id", "participant_type", "contact_id",
            name="uq_participants_thread_contact",
        ),
        Index("ix_participants_external_address", "external_address"),
    )

    def __repr__(self) -> str:
        return f"<ConversationParticipant {self.participant_type} {self.display_name}>"


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversation_threads.id"), nullable=False
    )
    participant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversation_participants.id")
    )

    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # inbound, outbound, internal
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    media_urls: Mapped[list] = mapped_column(JSONB, default=list)

    # Delivery
    delivery_status: Mapped[str] = mapped_column(
        String(20), default="queued"
    )  # queued, sent, delivered, failed, undelivered
    provider: Mapped[Optional[str]] = mapped_column(String(50))  # twilio, email_webhook, dm_webhook
    # Idempotency key - webhook retries carry the same id
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)

    from_address: Mapped[Optional[str]] = mapped_column(String(255))
    to_address: Mapped[Optional[str]] = mapped_column(String(255))

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_messages_thread_created", "thread_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ConversationMessage {self.direction} {self.channel} status={self.delivery_status}>"


class MessageDeliveryEvent(Base):
    """Append-only status transitions for a message."""
    __tablename__ = "message_delivery_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversation_messages.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text)
    provider: Mapped[Optional[str]] = mapped_column(String(50))
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_delivery_events_message_id", "message_id"),
    )

    def __repr__(self) -> str:
        return f"<MessageDeliveryEvent {self.status}>"
