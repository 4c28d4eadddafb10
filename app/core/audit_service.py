"""
Audit logging for administrative actions. Call once per action, inside the action's transaction.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import AuditLog

DETAILS_MAX_LENGTH = 500


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


async def log_audit(
    db: AsyncSession,
    school_id: UUID,
    action_type: str,
    *,
    admin_id: Optional[UUID] = None,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Append one audit log entry. Details are stored as JSON, cut to 500 characters. Caller must commit."""
    serialized = None
    if details is not None:
        serialized = _truncate(json.dumps(details, default=str), DETAILS_MAX_LENGTH)
    entry = AuditLog(
        school_id=school_id,
        action_type=action_type,
        admin_id=admin_id,
        target_id=target_id,
        details=serialized,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry
