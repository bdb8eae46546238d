"""
Database models - import all models here so Alembic can discover them.
"""
from inbox_engine.models.contact import Contact
from inbox_engine.models.lead import Lead, LeadAutomationState
from inbox_engine.models.followup import FollowupTask
from inbox_engine.models.crm_pipeline import CrmPipeline
from inbox_engine.models.conversation import (
    ConversationThread,
    ConversationParticipant,
    ConversationMessage,
    MessageDeliveryEvent,
)
from inbox_engine.models.outbox import OutboxEvent
from inbox_engine.models.audit_log import AuditLog

__all__ = [
    "Contact",
    "Lead",
    "LeadAutomationState",
    "FollowupTask",
    "CrmPipeline",
    "ConversationThread",
    "ConversationParticipant",
    "ConversationMessage",
    "MessageDeliveryEvent",
    "OutboxEvent",
    "AuditLog",
]
