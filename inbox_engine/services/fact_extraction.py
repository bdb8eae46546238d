"""
Best-effort fact extraction from free-form message text.

Direct messages and web chats often arrive with nothing but a platform handle.
An extractor scans the body for a name, email, phone and US postal code so the
resolver can match or enrich a contact. Extraction is an enrichment, never a
requirement: every field is optional and extractors never raise.

The FactExtractor interface keeps the regex heuristics swappable without
touching the transactional core.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from inbox_engine.utils.phone import DEFAULT_REGION, NormalizedPhone, find_phone_in_text

logger = logging.getLogger(__name__)

EMAIL_IN_TEXT = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
US_POSTAL_CODE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
SELF_INTRODUCTION = re.compile(
    r"\b(?:my name is|this is|i am|i'm)\s+([A-Za-z]+(?:\s+[A-Za-z]+){0,2})\b",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ExtractedFacts:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[NormalizedPhone] = None
    postal_code: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.email or self.phone or self.postal_code)


class FactExtractor(ABC):
    """Pulls candidate contact facts out of a message body."""

    @abstractmethod
    def extract(self, body: str) -> ExtractedFacts:
        ...


class NullFactExtractor(FactExtractor):
    """Extracts nothing. Useful where body text must never influence identity."""

    def extract(self, body: str) -> ExtractedFacts:
        return ExtractedFacts()


class RegexFactExtractor(FactExtractor):
    """
    Pattern-based extraction, in order:
    1. first email-shaped token
    2. first US phone-shaped token that parses (left to right)
    3. first 5-digit (optionally +4) postal code
    4. a self-introduction ("my name is X", "this is X", "I am X", "I'm X"),
       rejected when any word of it names the business ("this is Dana from Acme")
    """

    def __init__(self, business_name: str = "", default_region: str = DEFAULT_REGION):
        # Words under 3 letters ("of", "&") never count as business words
        self.business_words = {w for w in business_name.lower().split() if len(w) >= 3}
        self.default_region = default_region

    def extract(self, body: str) -> ExtractedFacts:
        if not body or not body.strip():
            return ExtractedFacts()
        try:
            return ExtractedFacts(
                name=self.extract_name(body),
                email=self.extract_email(body),
                phone=find_phone_in_text(body, self.default_region),
                postal_code=self.extract_postal_code(body),
            )
        except Exception as e:
            logger.warning("Fact extraction failed, continuing without facts: %s", str(e))
            return ExtractedFacts()

    def extract_email(self, body: str) -> Optional[str]:
        match = EMAIL_IN_TEXT.search(body)
        return match.group(0).strip().lower() if match else None

    def extract_postal_code(self, body: str) -> Optional[str]:
        match = US_POSTAL_CODE.search(body)
        return match.group(0) if match else None

    def extract_name(self, body: str) -> Optional[str]:
        normalized = _WHITESPACE.sub(" ", body).strip()
        match = SELF_INTRODUCTION.search(normalized)
        if not match:
            return None
        name = match.group(1).strip()
        if not name:
            return None
        if self._echoes_business(name):
            return None
        return name

    def _echoes_business(self, name: str) -> bool:
        return any(word in self.business_words for word in name.lower().split())


def default_extractor() -> FactExtractor:
    """Regex extractor configured from settings."""
    from inbox_engine.config import get_settings
    settings = get_settings()
    return RegexFactExtractor(
        business_name=settings.business_name,
        default_region=settings.default_phone_region,
    )
