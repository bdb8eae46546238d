"""
Lead and lead automation state.

Leads are created by intake flows outside this engine; inbound ingestion only
reads them (to pre-link new threads) and stops their follow-up automation.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from inbox_engine.database import Base


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contacts.id"), nullable=False
    )
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    status: Mapped[str] = mapped_column(String(30), default="new", nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_leads_contact_updated", "contact_id", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Lead {self.id} status={self.status}>"


class LeadAutomationState(Base):
    """Per-lead scripted follow-up cadence. A human reply stops it."""
    __tablename__ = "lead_automation_states"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id"), nullable=False, unique=True
    )
    channel: Mapped[str] = mapped_column(String(10), default="sms", nullable=False)

    followup_state: Mapped[str] = mapped_column(
        String(20), default="running", nullable=False
    )  # running, paused, stopped
    followup_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_followup_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<LeadAutomationState lead={self.lead_id} {self.followup_state}#{self.followup_step}>"
