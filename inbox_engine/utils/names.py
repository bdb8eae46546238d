"""
Contact name helpers.

Channels that carry no name produce placeholder contacts ("Unknown Contact",
or "Messenger 1234567" from DM integrations). Placeholders may later be
replaced by a learned name; real names never are.
"""
import re
from typing import NamedTuple, Optional

UNKNOWN_CONTACT = "Unknown Contact"

_MESSENGER_PLACEHOLDER = re.compile(r"^messenger\s+\d+$", re.IGNORECASE)


class SplitName(NamedTuple):
    first_name: str
    last_name: str


def split_full_name(full_name: Optional[str]) -> SplitName:
    """
    Split a display name into first/last.

    'Dana'            -> ('Dana', '')
    'Dana Reyes Cruz' -> ('Dana', 'Reyes Cruz')
    None / blank      -> ('Unknown', 'Contact')
    """
    cleaned = (full_name or "").strip() or UNKNOWN_CONTACT
    parts = cleaned.split()
    return SplitName(first_name=parts[0], last_name=" ".join(parts[1:]))


def join_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return " ".join(p for p in (first_name, last_name) if p).strip()


def is_meaningful_name(value: Optional[str]) -> bool:
    """False for blanks and for the placeholders channels generate."""
    trimmed = (value or "").strip()
    if not trimmed:
        return False
    if trimmed.lower() == UNKNOWN_CONTACT.lower():
        return False
    if _MESSENGER_PLACEHOLDER.match(trimmed):
        return False
    return True


def is_placeholder_name(first_name: Optional[str], last_name: Optional[str]) -> bool:
    """True when a stored contact name is still a channel placeholder."""
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not first and not last:
        return True
    if first == "Unknown" and last == "Contact":
        return True
    return first == "Messenger" and last.isdigit()
