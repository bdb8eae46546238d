"""
Tests for inbox_engine/services/messages.py - body placeholders, duplicates, insert.
"""
from datetime import datetime, timezone

from sqlalchemy import select

from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import ConversationThread, MessageDeliveryEvent
from inbox_engine.schemas.inbound import InboundMessage
from inbox_engine.services.messages import (
    EMPTY_PLACEHOLDER,
    MEDIA_PLACEHOLDER,
    find_duplicate,
    insert_inbound_message,
    resolve_body,
    touch_thread,
)
from inbox_engine.services.threads import ensure_participant, resolve_thread

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class TestResolveBody:
    def test_trims(self):
        assert resolve_body("  hello \n", []) == "hello"

    def test_media_placeholder(self):
        assert resolve_body("   ", ["https://media.example/1.jpg"]) == MEDIA_PLACEHOLDER

    def test_empty_placeholder(self):
        assert resolve_body(None, []) == EMPTY_PLACEHOLDER


class TestTouchThread:
    def test_preview_truncated(self):
        thread = ConversationThread(channel="sms", status="open")
        touch_thread(thread, "x" * 300, NOW)
        assert len(thread.last_message_preview) == 140
        assert thread.last_message_at == NOW
        assert thread.updated_at == NOW

    def test_custom_length(self):
        thread = ConversationThread(channel="sms", status="open")
        touch_thread(thread, "hello world", NOW, preview_length=5)
        assert thread.last_message_preview == "hello"


class TestInsertAndFindDuplicate:
    async def _setup(self, db):
        contact = Contact(first_name="Dana", last_name="Reyes", phone_e164="+14045551234")
        db.add(contact)
        await db.flush()
        thread = await resolve_thread(db, contact, "sms", NOW)
        participant = await ensure_participant(db, thread, contact, "+14045551234", NOW)
        return contact, thread, participant

    async def test_insert_records_delivery_event(self, db):
        _, thread, participant = await self._setup(db)
        inbound = InboundMessage(
            channel="sms", body="Hi", from_address="+14045551234", provider="twilio",
            provider_message_id="SM1", media_urls=["https://media.example/1.jpg"],
            metadata={"smsStatus": "received"},
        )
        message = await insert_inbound_message(db, thread, participant, inbound, "+14045551234", "Hi")
        await db.flush()

        assert message.direction == "inbound"
        assert message.delivery_status == "delivered"
        assert message.media_urls == ["https://media.example/1.jpg"]
        assert message.extra_data == {"smsStatus": "received"}

        event = (await db.execute(select(MessageDeliveryEvent))).scalar_one()
        assert event.message_id == message.id
        assert event.status == "delivered"
        assert event.detail == "inbound"
        assert event.provider == "twilio"

    async def test_find_duplicate(self, db):
        contact, thread, participant = await self._setup(db)
        inbound = InboundMessage(channel="sms", body="Hi", from_address="+14045551234", provider_message_id="SM2")
        message = await insert_inbound_message(db, thread, participant, inbound, "+14045551234", "Hi")
        await db.flush()

        duplicate = await find_duplicate(db, "SM2")
        assert duplicate.duplicate is True
        assert duplicate.message_id == message.id
        assert duplicate.thread_id == thread.id
        assert duplicate.contact_id == contact.id
        assert duplicate.lead_id is None

    async def test_find_duplicate_without_id(self, db):
        assert await find_duplicate(db, None) is None
        assert await find_duplicate(db, "SM-unknown") is None
