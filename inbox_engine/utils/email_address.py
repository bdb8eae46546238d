"""
Email sender address parsing.
"""
import re
from typing import NamedTuple, Optional

_DISPLAY_FORM = re.compile(r"^(.*)<([^>]+)>$")


class ParsedEmail(NamedTuple):
    email: str
    display_name: Optional[str]


def parse_email_address(value: str) -> ParsedEmail:
    """
    Split an RFC-style sender into address and display name.

    '"Dana Reyes" <Dana@Example.com>' -> ("dana@example.com", "Dana Reyes")
    ' dana@example.com '              -> ("dana@example.com", None)
    """
    trimmed = (value or "").strip()
    match = _DISPLAY_FORM.match(trimmed)
    if match:
        name = match.group(1).strip().strip('"').strip()
        email = match.group(2).strip().lower()
        return ParsedEmail(email=email, display_name=name or None)

    return ParsedEmail(email=trimmed.lower(), display_name=None)


def normalize_email(value: Optional[str]) -> Optional[str]:
    """Lowercase and trim an email, or None when blank."""
    if not value or not value.strip():
        return None
    return value.strip().lower()
