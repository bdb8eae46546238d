"""
Lead follow-up automation control.

A human reply supersedes automation: the lead's cadence is stopped and every
follow-up that has not fired yet is cancelled.
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.models.followup import FollowupTask
from inbox_engine.models.lead import LeadAutomationState

logger = logging.getLogger(__name__)


async def stop_lead_automation(
    db: AsyncSession,
    lead_id: uuid.UUID,
    now: datetime,
    reason: str = "lead_responded",
) -> int:
    """
    Stop the lead's follow-up cadence and cancel its pending follow-ups.
    Returns the number of follow-up tasks cancelled.
    """
    await db.execute(
        update(LeadAutomationState)
        .where(LeadAutomationState.lead_id == lead_id)
        .values(
            followup_state="stopped",
            followup_step=0,
            next_followup_at=None,
            updated_at=now,
        )
    )

    result = await db.execute(
        update(FollowupTask)
        .where(FollowupTask.lead_id == lead_id, FollowupTask.status == "pending")
        .values(status="cancelled", skip_reason=reason, updated_at=now)
    )
    cancelled = result.rowcount or 0

    if cancelled:
        logger.info("Cancelled %d pending follow-ups for lead %s (%s)", cancelled, str(lead_id)[:8], reason)
    return cancelled
