"""
Outbox event model - durable work requests for downstream consumers
(notifications, outbound delivery). Written after the inbound transaction
commits; consumers mark processed_at when done.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from inbox_engine.database import Base


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # message.received
    payload: Mapped[Optional[dict]] = mapped_column(JSONB)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_outbox_unprocessed", "processed_at", "next_attempt_at"),
        Index("ix_outbox_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.type} attempts={self.attempts}>"
