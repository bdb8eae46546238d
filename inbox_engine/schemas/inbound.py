"""
Inbound message envelope - the universal input for every channel.
Each webhook normalizes its provider payload into an InboundMessage before
calling record_inbound_message.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, field_validator

Channel = Literal["sms", "email", "dm", "call", "web"]


class InboundMessage(BaseModel):
    """One physical inbound delivery from a provider."""
    channel: Channel
    body: str = ""
    subject: Optional[str] = None
    from_address: str = Field(..., description="Sender address as the channel supplied it")
    to_address: Optional[str] = None
    provider: Optional[str] = Field(default=None, description="twilio, email_webhook, dm_webhook, ...")
    provider_message_id: Optional[str] = Field(
        default=None, description="Idempotency key; provider redeliveries share it"
    )
    media_urls: list[str] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sender_name: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, description="Structured phone hint (dm/web)")
    contact_email: Optional[str] = Field(default=None, description="Structured email hint (dm/web)")

    @field_validator("body", mode="before")
    @classmethod
    def _none_body_to_empty(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator(
        "subject", "to_address", "provider", "provider_message_id",
        "sender_name", "contact_phone", "contact_email",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("media_urls", mode="before")
    @classmethod
    def _drop_blank_media(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, list):
            return [u.strip() for u in v if isinstance(u, str) and u.strip()]
        return v


class InboundResult(BaseModel):
    """Identifiers of what an inbound delivery resolved to."""
    thread_id: uuid.UUID
    message_id: uuid.UUID
    contact_id: Optional[uuid.UUID] = None
    lead_id: Optional[uuid.UUID] = None
    duplicate: bool = False
