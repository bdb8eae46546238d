"""
Tests for inbox_engine/services/inbox.py - the end-to-end ingestion contract.

Covers:
- Idempotent replay of provider deliveries
- Identity stability and thread reuse
- Reopen on reply
- Non-blocking text extraction for DMs
- Automation cancellation
- Fatal errors leave no partial rows
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from inbox_engine.exceptions import InvalidPhoneError, ThreadCreateFailedError
from inbox_engine.models.audit_log import AuditLog
from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import (
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
    MessageDeliveryEvent,
)
from inbox_engine.models.crm_pipeline import CrmPipeline
from inbox_engine.models.followup import FollowupTask
from inbox_engine.models.lead import LeadAutomationState
from inbox_engine.models.outbox import OutboxEvent
from inbox_engine.services.fact_extraction import NullFactExtractor, RegexFactExtractor
from inbox_engine.services.inbox import record_inbound_message
from inbox_engine.utils.locks import LockTimeoutError


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


class TestScenario:
    async def test_first_sms_from_new_sender(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            body="Hi, I'm Dana, is Tuesday ok?", provider_message_id="SM100",
        ))
        assert result.duplicate is False
        assert result.lead_id is None

        contact = (await db.execute(select(Contact))).scalar_one()
        assert contact.phone_e164 == "+14045551234"
        assert contact.id == result.contact_id

        thread = (await db.execute(select(ConversationThread))).scalar_one()
        assert thread.id == result.thread_id
        assert thread.channel == "sms"
        assert thread.status == "open"
        assert thread.last_message_preview == "Hi, I'm Dana, is Tuesday ok?"

        participant = (await db.execute(select(ConversationParticipant))).scalar_one()
        assert participant.participant_type == "contact"
        assert participant.contact_id == contact.id

        message = (await db.execute(select(ConversationMessage))).scalar_one()
        assert message.id == result.message_id
        assert message.direction == "inbound"
        assert message.body == "Hi, I'm Dana, is Tuesday ok?"
        assert message.participant_id == participant.id

        assert await _count(db, MessageDeliveryEvent) == 1

        outbox = (await db.execute(select(OutboxEvent))).scalar_one()
        assert outbox.type == "message.received"
        assert outbox.payload == {
            "messageId": str(result.message_id),
            "threadId": str(result.thread_id),
            "channel": "sms",
        }

        audit = (await db.execute(select(AuditLog))).scalar_one()
        assert audit.action == "message.received"
        assert audit.entity_type == "conversation_message"
        assert audit.entity_id == str(result.message_id)
        assert audit.actor_type == "system"
        assert audit.actor_label == "twilio"
        assert audit.meta["from"] == "+14045551234"

    async def test_outbox_consumers_notified(self, db, make_inbound, mock_redis):
        await record_inbound_message(db, make_inbound(provider_message_id="SM101"))
        outbox = (await db.execute(select(OutboxEvent))).scalar_one()
        mock_redis.lpush.assert_awaited_once_with("inbox:outbox_notify", str(outbox.id))


class TestIdempotency:
    async def test_replay_is_duplicate(self, db, make_inbound):
        inbound = make_inbound(body="Tuesday works", provider_message_id="SM200")
        first = await record_inbound_message(db, inbound)
        second = await record_inbound_message(db, inbound)

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.message_id == first.message_id
        assert second.thread_id == first.thread_id
        assert second.contact_id == first.contact_id
        assert await _count(db, ConversationMessage) == 1

    async def test_replay_skips_side_effects(self, db, make_inbound):
        inbound = make_inbound(provider_message_id="SM201")
        await record_inbound_message(db, inbound)
        await record_inbound_message(db, inbound)

        assert await _count(db, OutboxEvent) == 1
        assert await _count(db, AuditLog) == 1
        assert await _count(db, MessageDeliveryEvent) == 1

    async def test_messages_without_provider_id_are_not_deduplicated(self, db, make_inbound):
        await record_inbound_message(db, make_inbound(channel="call", body="Missed call"))
        await record_inbound_message(db, make_inbound(channel="call", body="Missed call"))
        assert await _count(db, ConversationMessage) == 2

    async def test_lost_insert_race_returns_winner(self, db, make_inbound):
        winner = await record_inbound_message(db, make_inbound(provider_message_id="SM202"))

        # The pre-check misses (as if the winner committed just after it ran)
        with patch(
            "inbox_engine.services.inbox.find_duplicate",
            side_effect=[None, await _winner_lookup(db, "SM202")],
        ):
            result = await record_inbound_message(db, make_inbound(provider_message_id="SM202"))

        assert result.duplicate is True
        assert result.message_id == winner.message_id
        assert await _count(db, ConversationMessage) == 1


async def _winner_lookup(db, provider_message_id):
    from inbox_engine.services.messages import find_duplicate
    return await find_duplicate(db, provider_message_id)


class TestIdentityAndThreads:
    async def test_same_number_same_contact_and_thread(self, db, make_inbound):
        first = await record_inbound_message(db, make_inbound(from_address="+14045551234", body="one"))
        second = await record_inbound_message(db, make_inbound(from_address="(404) 555-1234", body="two"))

        assert second.contact_id == first.contact_id
        assert second.thread_id == first.thread_id
        assert await _count(db, Contact) == 1
        assert await _count(db, ConversationThread) == 1

        contact = await db.get(Contact, first.contact_id)
        assert contact.phone_e164 == "+14045551234"
        assert contact.phone == "+14045551234"

        thread = await db.get(ConversationThread, first.thread_id)
        assert thread.last_message_preview == "two"

    async def test_reopens_closed_thread(self, db, make_inbound):
        first = await record_inbound_message(db, make_inbound(body="one"))
        thread = await db.get(ConversationThread, first.thread_id)
        thread.status = "closed"
        await db.commit()

        second = await record_inbound_message(db, make_inbound(body="back again"))
        assert second.thread_id == first.thread_id
        assert (await db.get(ConversationThread, first.thread_id)).status == "open"
        assert await _count(db, ConversationThread) == 1

    async def test_new_thread_when_reopen_disabled(self, db, make_inbound, monkeypatch):
        first = await record_inbound_message(db, make_inbound(body="one"))
        thread = await db.get(ConversationThread, first.thread_id)
        thread.status = "closed"
        await db.commit()

        monkeypatch.setenv("INBOX_REOPEN_CLOSED_THREADS", "false")
        from inbox_engine.config import get_settings
        get_settings.cache_clear()

        second = await record_inbound_message(db, make_inbound(body="back again"))
        assert second.thread_id != first.thread_id
        assert await _count(db, ConversationThread) == 2

    async def test_email_thread_keeps_subject(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            channel="email", from_address='"Dana Reyes" <Dana@Example.com>',
            subject="Couch pickup", body="Can you take a couch?", provider="email_webhook",
        ))
        thread = await db.get(ConversationThread, result.thread_id)
        contact = await db.get(Contact, result.contact_id)
        assert thread.subject == "Couch pickup"
        assert contact.email == "dana@example.com"
        assert (contact.first_name, contact.last_name) == ("Dana", "Reyes")

    async def test_media_only_sms(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            body="", media_urls=["https://media.example/1.jpg", "  "],
        ))
        message = await db.get(ConversationMessage, result.message_id)
        assert message.body == "Media message"
        assert message.media_urls == ["https://media.example/1.jpg"]


class TestDirectMessages:
    async def test_no_contact_info_still_records(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:1000001", body="call me back, no contact info",
            provider="facebook",
        ), extractor=RegexFactExtractor())

        contact = await db.get(Contact, result.contact_id)
        assert (contact.first_name, contact.last_name) == ("Unknown", "Contact")
        assert contact.email is None
        assert contact.phone_e164 is None
        assert await _count(db, ConversationMessage) == 1

    async def test_facts_seed_new_contact(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:1000002",
            body="My name is Dana Reyes, 512-555-9876, zip 78701", provider="facebook",
        ), extractor=RegexFactExtractor())

        contact = await db.get(Contact, result.contact_id)
        assert (contact.first_name, contact.last_name) == ("Dana", "Reyes")
        assert contact.phone_e164 == "+15125559876"
        pipeline = (await db.execute(select(CrmPipeline))).scalar_one()
        assert pipeline.notes == "ZIP: 78701"

    async def test_handle_history_resolves_follow_up_dm(self, db, make_inbound):
        first = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:1000003", body="hello", provider="facebook",
        ), extractor=NullFactExtractor())
        second = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:1000003", body="I'm Dana.", provider="facebook",
        ), extractor=RegexFactExtractor())

        assert second.contact_id == first.contact_id
        assert second.thread_id == first.thread_id
        contact = await db.get(Contact, first.contact_id)
        assert contact.first_name == "Dana"

    async def test_hints_suppress_extraction(self, db, make_inbound):
        extractor = RegexFactExtractor()
        with patch.object(extractor, "extract", wraps=extractor.extract) as spy:
            result = await record_inbound_message(db, make_inbound(
                channel="dm", from_address="fb:1000004", body="my email is x@example.com",
                contact_email="Dana@Example.com",
            ), extractor=extractor)
        spy.assert_not_called()
        contact = await db.get(Contact, result.contact_id)
        assert contact.email == "dana@example.com"

    async def test_unparseable_hint_phone_ignored(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            channel="web", from_address="session-9", body="hello", contact_phone="n/a",
        ), extractor=NullFactExtractor())
        contact = await db.get(Contact, result.contact_id)
        assert contact.phone_e164 is None

    async def test_hints_ignored_outside_dm_and_web(self, db, make_inbound):
        result = await record_inbound_message(db, make_inbound(
            from_address="+14045557777", body="hi", contact_email="dana@example.com",
        ))
        contact = await db.get(Contact, result.contact_id)
        assert contact.email is None

    async def test_backfill_conflict_still_records_message(self, db, make_inbound):
        db.add(Contact(first_name="Sam", last_name="", email="taken@example.com"))
        await db.commit()

        first = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:77", body="hello", provider_message_id="mid-77a",
        ), extractor=NullFactExtractor())
        second = await record_inbound_message(db, make_inbound(
            channel="dm", from_address="fb:77", body="reach me at taken@example.com",
            provider_message_id="mid-77b",
        ), extractor=RegexFactExtractor())

        assert second.duplicate is False
        assert second.contact_id == first.contact_id
        assert second.thread_id == first.thread_id
        contact = await db.get(Contact, first.contact_id)
        await db.refresh(contact)
        assert contact.email is None
        messages = (await db.execute(
            select(func.count()).select_from(ConversationMessage).where(
                ConversationMessage.thread_id == first.thread_id
            )
        )).scalar()
        assert messages == 2


class TestAutomationCancellation:
    async def test_reply_stops_automation(self, db, make_inbound, existing_thread, contact_with_lead):
        _, lead = contact_with_lead
        result = await record_inbound_message(db, make_inbound(body="Yes please", provider_message_id="SM300"))

        assert result.thread_id == existing_thread.id
        assert result.lead_id == lead.id

        state = (await db.execute(
            select(LeadAutomationState).where(LeadAutomationState.lead_id == lead.id)
        )).scalar_one()
        await db.refresh(state)
        assert state.followup_state == "stopped"
        assert state.followup_step == 0
        assert state.next_followup_at is None

        pending = (await db.execute(
            select(func.count()).select_from(FollowupTask).where(
                FollowupTask.lead_id == lead.id, FollowupTask.status == "pending",
            )
        )).scalar()
        assert pending == 0

        task = (await db.execute(select(FollowupTask))).scalar_one()
        await db.refresh(task)
        assert task.status == "cancelled"
        assert task.skip_reason == "lead_responded"

    async def test_new_thread_inherits_lead(self, db, make_inbound, contact_with_lead):
        _, lead = contact_with_lead
        result = await record_inbound_message(db, make_inbound(body="hello"))
        assert result.lead_id == lead.id


class TestFailures:
    async def test_invalid_phone_writes_nothing(self, db, make_inbound):
        with pytest.raises(InvalidPhoneError):
            await record_inbound_message(db, make_inbound(from_address="Anonymous"))

        assert await _count(db, Contact) == 0
        assert await _count(db, ConversationThread) == 0
        assert await _count(db, ConversationMessage) == 0
        assert await _count(db, OutboxEvent) == 0

    async def test_fatal_error_rolls_back_contact(self, db, make_inbound):
        with patch(
            "inbox_engine.services.inbox.resolve_thread",
            new_callable=AsyncMock,
            side_effect=ThreadCreateFailedError(),
        ):
            with pytest.raises(ThreadCreateFailedError):
                await record_inbound_message(db, make_inbound())

        assert await _count(db, Contact) == 0
        assert await _count(db, ConversationMessage) == 0

    async def test_fanout_failure_does_not_fail_call(self, db, make_inbound):
        with patch(
            "inbox_engine.services.fanout.enqueue_outbox_event",
            new_callable=AsyncMock,
            side_effect=RuntimeError("outbox down"),
        ):
            result = await record_inbound_message(db, make_inbound(provider_message_id="SM400"))

        assert result.duplicate is False
        assert await _count(db, ConversationMessage) == 1
        assert await _count(db, OutboxEvent) == 0
        assert await _count(db, AuditLog) == 1

    async def test_lock_timeout_still_records(self, db, make_inbound):
        with patch(
            "inbox_engine.services.inbox.sender_lock",
            side_effect=LockTimeoutError("busy"),
        ):
            result = await record_inbound_message(db, make_inbound(provider_message_id="SM401"))
        assert result.duplicate is False
        assert await _count(db, ConversationMessage) == 1
