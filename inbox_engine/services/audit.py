"""
Audit trail writer.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

ACTOR_TYPES = ("human", "ai", "system", "worker")


@dataclass(frozen=True)
class AuditActor:
    type: str = "system"
    id: Optional[str] = None
    label: Optional[str] = None


async def record_audit_event(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    actor: Optional[AuditActor] = None,
    meta: Optional[dict] = None,
) -> AuditLog:
    actor = actor or AuditActor()
    entry = AuditLog(
        actor_type=actor.type if actor.type in ACTOR_TYPES else "system",
        actor_id=actor.id,
        actor_label=actor.label,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=meta,
    )
    db.add(entry)
    await db.flush()
    return entry
