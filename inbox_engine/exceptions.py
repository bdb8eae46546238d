"""
Inbound ingestion errors.

Every fatal condition aborts the surrounding transaction and propagates to the
webhook handler, which maps `code` onto a provider-facing HTTP status.
"""


class InboundMessageError(Exception):
    """Base class for fatal inbound recording failures."""

    code = "inbound_failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class InvalidPhoneError(InboundMessageError):
    """The channel requires a parseable phone number and none was supplied."""

    code = "invalid_phone"


class ContactMissingError(InboundMessageError):
    """Every resolution strategy was exhausted and no contact came out."""

    code = "contact_missing"


class ContactCreateFailedError(InboundMessageError):
    code = "contact_create_failed"


class ThreadCreateFailedError(InboundMessageError):
    code = "thread_create_failed"


class MessageCreateFailedError(InboundMessageError):
    code = "message_create_failed"
