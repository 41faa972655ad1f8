from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.domain.models import ActivityLog
from inboxvault.persistence.guards import require_scope, tenant_predicate
from inboxvault.persistence.tenancy import TenantScope


_SENSITIVE_KEY_PATTERNS = ["token", "secret", "password", "authorization", "api_key", "_enc"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_fields(value: Any) -> Any:
    # Recursively scrub credential-bearing fields before they are written to the audit trail.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_fields(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_fields(item) for item in value]
    return value


async def record_activity(
    session: AsyncSession,
    scope: TenantScope,
    *,
    action: str,
    entity_type: str,
    entity_id: UUID | None = None,
    user_id: UUID | None = None,
    before_fields: dict[str, Any] | None = None,
    after_fields: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> ActivityLog:
    # Append-only; tenant sessions never update or delete activity rows.
    resolved = require_scope(scope)
    row = ActivityLog(
        tenant_id=resolved.tenant_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before_fields=sanitize_fields(before_fields) if before_fields is not None else None,
        after_fields=sanitize_fields(after_fields) if after_fields is not None else None,
    )
    if created_at is not None:
        row.created_at = created_at
    session.add(row)
    await session.flush()
    return row


async def list_activity(
    session: AsyncSession,
    scope: TenantScope,
    *,
    entity_type: str | None = None,
    limit: int = 50,
) -> list[ActivityLog]:
    stmt = select(ActivityLog).where(tenant_predicate(ActivityLog, scope))
    if entity_type:
        stmt = stmt.where(ActivityLog.entity_type == entity_type)
    stmt = stmt.order_by(ActivityLog.created_at.desc(), ActivityLog.id).limit(max(1, min(limit, 500)))
    result = await session.execute(stmt)
    return list(result.scalars().all())
