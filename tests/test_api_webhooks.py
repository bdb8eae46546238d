"""
Tests for inbox_engine/api/webhooks.py - provider payload adapters.

Routes are exercised through the ASGI app with the session dependency
pointed at the in-memory test database.
"""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import func, select

from inbox_engine.api.webhooks import is_missed_call, parse_duration, strip_html
from inbox_engine.database import get_db
from inbox_engine.exceptions import ThreadCreateFailedError
from inbox_engine.main import create_app
from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import ConversationMessage, ConversationThread


@pytest.fixture
async def client(db):
    app = create_app()

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _messages(db) -> list[ConversationMessage]:
    return (await db.execute(select(ConversationMessage))).scalars().all()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    @pytest.mark.parametrize("status", ["no-answer", "busy", "failed", "canceled", "NO-ANSWER"])
    def test_missed_statuses(self, status):
        assert is_missed_call(status, 12) is True

    def test_completed_zero_duration_is_missed(self):
        assert is_missed_call("completed", 0) is True
        assert is_missed_call("completed", None) is True

    def test_answered_call(self):
        assert is_missed_call("completed", 42) is False
        assert is_missed_call("in-progress", None) is False
        assert is_missed_call(None, 0) is False

    def test_parse_duration(self):
        assert parse_duration("17") == 17
        assert parse_duration("abc") is None
        assert parse_duration(None) is None

    def test_strip_html(self):
        assert strip_html("<p>Hi <b>there</b></p>\n<br/>bye") == "Hi there bye"


# ---------------------------------------------------------------------------
# POST /api/v1/webhooks/twilio/sms
# ---------------------------------------------------------------------------

class TestTwilioSms:
    async def test_records_message(self, client, db):
        resp = await client.post("/api/v1/webhooks/twilio/sms", data={
            "From": "+14045551234", "To": "+15125550199", "Body": "Hi, I'm Dana, is Tuesday ok?",
            "MessageSid": "SM500", "SmsStatus": "received", "NumMedia": "0",
        })
        assert resp.status_code == 200
        assert resp.text == "ok"

        [message] = await _messages(db)
        assert message.provider == "twilio"
        assert message.provider_message_id == "SM500"
        assert message.to_address == "+15125550199"
        assert message.extra_data == {"smsStatus": "received", "numMedia": 0}

    async def test_media_urls(self, client, db):
        resp = await client.post("/api/v1/webhooks/twilio/sms", data={
            "From": "+14045551234", "Body": "", "SmsSid": "SM501", "NumMedia": "2",
            "MediaUrl0": "https://media.example/0.jpg", "MediaUrl1": "https://media.example/1.jpg",
        })
        assert resp.status_code == 200

        [message] = await _messages(db)
        assert message.provider_message_id == "SM501"
        assert message.body == "Media message"
        assert message.media_urls == ["https://media.example/0.jpg", "https://media.example/1.jpg"]

    async def test_redelivery_is_ok_and_not_duplicated(self, client, db):
        form = {"From": "+14045551234", "Body": "hello", "MessageSid": "SM502"}
        assert (await client.post("/api/v1/webhooks/twilio/sms", data=form)).status_code == 200
        assert (await client.post("/api/v1/webhooks/twilio/sms", data=form)).status_code == 200
        assert len(await _messages(db)) == 1

    async def test_missing_from(self, client):
        resp = await client.post("/api/v1/webhooks/twilio/sms", data={"Body": "hello"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_from"}

    async def test_invalid_phone(self, client, db):
        resp = await client.post("/api/v1/webhooks/twilio/sms", data={"From": "Restricted", "Body": "hi"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_phone"}
        assert (await db.execute(select(func.count()).select_from(Contact))).scalar() == 0

    async def test_engine_error_maps_to_500(self, client):
        with patch(
            "inbox_engine.api.webhooks.record_inbound_message",
            new_callable=AsyncMock,
            side_effect=ThreadCreateFailedError(),
        ):
            resp = await client.post("/api/v1/webhooks/twilio/sms", data={"From": "+14045551234"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "thread_create_failed"}

    async def test_correlation_id_echoed(self, client):
        resp = await client.post(
            "/api/v1/webhooks/twilio/sms",
            data={"From": "+14045551234", "Body": "hi"},
            headers={"X-Correlation-ID": "abc123"},
        )
        assert resp.headers["X-Correlation-ID"] == "abc123"


# ---------------------------------------------------------------------------
# POST /api/v1/webhooks/twilio/voice
# ---------------------------------------------------------------------------

class TestTwilioVoice:
    async def test_missed_call_recorded(self, client, db):
        resp = await client.post("/api/v1/webhooks/twilio/voice", data={
            "From": "+14045551234", "To": "+15125550199", "CallSid": "CA600",
            "CallStatus": "no-answer", "CallDuration": "0",
        })
        assert resp.status_code == 200

        [message] = await _messages(db)
        assert message.channel == "call"
        assert message.body == "Missed call"
        assert message.subject == "Missed call"
        assert message.provider_message_id == "CA600"
        assert message.extra_data == {"callStatus": "no-answer", "callDuration": 0}

        thread = (await db.execute(select(ConversationThread))).scalar_one()
        assert thread.channel == "call"

    async def test_answered_call_ignored(self, client, db):
        resp = await client.post("/api/v1/webhooks/twilio/voice", data={
            "From": "+14045551234", "CallSid": "CA601", "CallStatus": "completed", "CallDuration": "95",
        })
        assert resp.status_code == 200
        assert resp.text == "ok"
        assert await _messages(db) == []

    async def test_missing_from(self, client):
        resp = await client.post("/api/v1/webhooks/twilio/voice", data={"CallStatus": "busy"})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# POST /api/v1/webhooks/email
# ---------------------------------------------------------------------------

class TestEmail:
    async def test_json_payload(self, client, db):
        payload = {
            "from": '"Dana Reyes" <Dana@Example.com>',
            "to": "inbox@example.com",
            "subject": "Couch pickup",
            "text": "Can you take a couch Tuesday?",
            "Message-Id": "<abc@mail.example.com>",
        }
        first = await client.post("/api/v1/webhooks/email", json=payload)
        assert first.status_code == 200
        assert first.json() == {"ok": True, "duplicate": False}

        second = await client.post("/api/v1/webhooks/email", json=payload)
        assert second.json() == {"ok": True, "duplicate": True}

        [message] = await _messages(db)
        assert message.subject == "Couch pickup"
        assert message.from_address == "dana@example.com"
        contact = (await db.execute(select(Contact))).scalar_one()
        assert contact.email == "dana@example.com"

    async def test_form_with_html_and_envelope(self, client, db):
        resp = await client.post("/api/v1/webhooks/email", data={
            "html": "<div>Need a <b>quote</b></div>",
            "envelope": json.dumps({"from": "sam@example.com", "to": ["a@example.com", "b@example.com"]}),
        })
        assert resp.status_code == 200

        [message] = await _messages(db)
        assert message.body == "Need a quote"
        assert message.from_address == "sam@example.com"
        assert message.to_address == "a@example.com,b@example.com"

    async def test_malformed_envelope_ignored(self, client):
        resp = await client.post("/api/v1/webhooks/email", data={"text": "hi", "envelope": "{nope"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_from"}


# ---------------------------------------------------------------------------
# POST /api/v1/webhooks/dm
# ---------------------------------------------------------------------------

class TestDirectMessage:
    async def test_records_with_hints(self, client, db):
        resp = await client.post("/api/v1/webhooks/dm", json={
            "from": "fb:1000001", "body": "Is Tuesday ok?", "source": "facebook",
            "name": "Dana Reyes", "email": "dana@example.com", "externalId": "mid.1",
        })
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "duplicate": False}

        [message] = await _messages(db)
        assert message.provider == "facebook"
        assert message.provider_message_id == "mid.1"
        assert message.extra_data == {"source": "facebook"}

        contact = (await db.execute(select(Contact))).scalar_one()
        assert contact.email == "dana@example.com"
        assert (contact.first_name, contact.last_name) == ("Dana", "Reyes")

    async def test_default_source(self, client, db):
        await client.post("/api/v1/webhooks/dm", json={"from": "ig:42", "body": "hey"})
        [message] = await _messages(db)
        assert message.provider == "dm_webhook"

    async def test_missing_from(self, client):
        resp = await client.post("/api/v1/webhooks/dm", json={"body": "hey"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing_from"}

    async def test_invalid_json(self, client):
        resp = await client.post(
            "/api/v1/webhooks/dm", content=b"not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_payload"}

    async def test_unexpected_error(self, client):
        with patch(
            "inbox_engine.api.webhooks.record_inbound_message",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            resp = await client.post("/api/v1/webhooks/dm", json={"from": "ig:42", "body": "hey"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "inbound_dm_failed"}
