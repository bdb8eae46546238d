"""
Sender identity normalization per channel.

- sms / call: must parse to a phone number, else InvalidPhoneError
- email:      "Display Name <addr>" split, address lowercased
- dm / web:   opaque platform handle, no format validation
"""
import logging
from dataclasses import dataclass
from typing import Optional

from inbox_engine.exceptions import InvalidPhoneError
from inbox_engine.utils.email_address import parse_email_address
from inbox_engine.utils.logging import mask_address
from inbox_engine.utils.phone import DEFAULT_REGION, NormalizedPhone, parse_phone

logger = logging.getLogger(__name__)

PHONE_CHANNELS = ("sms", "call")
TEXT_IDENTITY_CHANNELS = ("dm", "web")


@dataclass(frozen=True)
class SenderIdentity:
    """Canonical sender identity for one inbound delivery."""
    channel: str
    address: str  # external address stored on the participant and message
    phone: Optional[NormalizedPhone] = None
    email: Optional[str] = None
    name_hint: Optional[str] = None


def normalize_sender(
    channel: str,
    from_address: str,
    sender_name: Optional[str] = None,
    default_region: str = DEFAULT_REGION,
) -> SenderIdentity:
    """Canonicalize a raw sender address for its channel."""
    address = (from_address or "").strip()
    name_hint = sender_name.strip() if sender_name and sender_name.strip() else None

    if channel in PHONE_CHANNELS:
        phone = parse_phone(address, default_region)
        if phone is None:
            logger.warning(
                "Unparseable %s sender %s", channel, mask_address(address),
                extra={"channel": channel, "error_code": InvalidPhoneError.code},
            )
            raise InvalidPhoneError()
        return SenderIdentity(channel=channel, address=address, phone=phone, name_hint=name_hint)

    if channel == "email":
        parsed = parse_email_address(address)
        return SenderIdentity(
            channel=channel,
            address=parsed.email,
            email=parsed.email or None,
            name_hint=name_hint or parsed.display_name,
        )

    return SenderIdentity(channel=channel, address=address, name_hint=name_hint)
