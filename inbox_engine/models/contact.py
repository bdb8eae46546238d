"""
Contact model - a person the business communicates with.
Email and E.164 phone are unique so concurrent find-or-create races
collapse onto one row; once set they are never overwritten by inference.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from inbox_engine.database import Base

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "Contact"


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default=UNKNOWN_FIRST_NAME)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40))  # as received
    phone_e164: Mapped[Optional[str]] = mapped_column(String(20), unique=True)

    source: Mapped[str] = mapped_column(
        String(50), nullable=False, default="inbound"
    )  # sms, call, email, inbound, lead_form

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_contacts_phone", "phone"),
    )

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    def __repr__(self) -> str:
        masked = self.phone_e164[:6] + "***" if self.phone_e164 else "no-phone"
        return f"<Contact {self.id} {masked}>"
