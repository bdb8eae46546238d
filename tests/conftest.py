"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

import inbox_engine.models  # noqa: F401  (registers tables on Base.metadata)
from inbox_engine.database import Base
from inbox_engine.models.contact import Contact
from inbox_engine.models.conversation import ConversationThread
from inbox_engine.models.followup import FollowupTask
from inbox_engine.models.lead import Lead, LeadAutomationState
from inbox_engine.schemas.inbound import InboundMessage


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests, with working SAVEPOINTs."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    # pysqlite defers BEGIN, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - locks always acquire, notifications are recorded."""
    with patch("inbox_engine.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.lpush = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached; clear so per-test env patches take effect."""
    from inbox_engine.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_inbound():
    """Factory for InboundMessage with sensible SMS defaults."""
    def _make(**overrides) -> InboundMessage:
        fields = {
            "channel": "sms",
            "body": "Hi there",
            "from_address": "+14045551234",
            "to_address": "+15125550199",
            "provider": "twilio",
        }
        fields.update(overrides)
        return InboundMessage(**fields)
    return _make


@pytest.fixture
async def contact_with_lead(db):
    """Existing contact with a lead, running automation and one pending follow-up."""
    now = datetime.now(timezone.utc)
    contact = Contact(
        first_name="Dana", last_name="Reyes",
        phone="+14045551234", phone_e164="+14045551234", source="sms",
    )
    db.add(contact)
    await db.flush()

    lead = Lead(contact_id=contact.id, status="new", source="website")
    db.add(lead)
    await db.flush()

    db.add(LeadAutomationState(
        lead_id=lead.id, followup_state="running", followup_step=2,
        next_followup_at=now + timedelta(hours=4),
    ))
    db.add(FollowupTask(
        lead_id=lead.id, sequence_number=3, scheduled_at=now + timedelta(hours=4),
        status="pending", message_content="Still interested?",
    ))
    await db.commit()
    return contact, lead


@pytest.fixture
async def existing_thread(db, contact_with_lead):
    contact, lead = contact_with_lead
    thread = ConversationThread(
        contact_id=contact.id, lead_id=lead.id, channel="sms", status="open",
    )
    db.add(thread)
    await db.commit()
    return thread
