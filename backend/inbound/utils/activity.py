"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, principal, action="stage_changed", entity_type="shipment",
        entity_id=shipment.id, entity_code=shipment.shipment_number,
        summary="Dock intake completed",
    )

The row is added to the current session and committed with the
enclosing transaction: no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal
from inbound.models.activity_log import ActivityLog


async def log_activity(
    db: AsyncSession,
    principal: Principal,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        user_name=principal.full_name or principal.user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
