"""
Phone number normalization - E.164 format using the phonenumbers library.
Handles parentheses, dashes, dots, spaces and a missing country code.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)

DEFAULT_REGION = "US"

# US-style phone shapes inside free text: optional +1, area code with or without parens
PHONE_IN_TEXT = re.compile(
    r"(?:\+?1[\s.-]*)?(?:\(\s*\d{3}\s*\)|\d{3})[\s.-]*\d{3}[\s.-]*\d{4}"
)


@dataclass(frozen=True)
class NormalizedPhone:
    """A phone number as received plus its canonical E.164 form."""
    raw: str
    e164: str


def parse_phone(phone: Optional[str], default_region: str = DEFAULT_REGION) -> Optional[NormalizedPhone]:
    """
    Parse a phone number into raw + E.164 forms.

    Handles:
    - (404) 555-1234 -> +14045551234
    - 404.555.1234   -> +14045551234
    - 4045551234     -> +14045551234
    - +14045551234   -> +14045551234

    Returns None if the number cannot be parsed or is not even a possible number.
    """
    if not phone or not phone.strip():
        return None

    cleaned = phone.strip()
    try:
        parsed = phonenumbers.parse(cleaned, default_region)
    except phonenumbers.NumberParseException:
        return None

    # Accept "possible" numbers, not only officially assigned ranges,
    # so demo/test exchanges are not rejected.
    if not (phonenumbers.is_valid_number(parsed) or phonenumbers.is_possible_number(parsed)):
        return None

    return NormalizedPhone(
        raw=cleaned,
        e164=phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164),
    )


def normalize_phone_e164(phone: Optional[str], default_region: str = DEFAULT_REGION) -> Optional[str]:
    """Normalize a phone number to E.164, or None if invalid."""
    normalized = parse_phone(phone, default_region)
    return normalized.e164 if normalized else None


def find_phone_in_text(text: str, default_region: str = DEFAULT_REGION) -> Optional[NormalizedPhone]:
    """Return the first phone-shaped token in text that parses, scanning left to right."""
    if not text:
        return None
    for match in PHONE_IN_TEXT.finditer(text):
        normalized = parse_phone(match.group(0), default_region)
        if normalized:
            return normalized
    return None
