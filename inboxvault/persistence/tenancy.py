"""Tenant-bound units of work.

Every request opens a :func:`tenant_session` for an explicit
:class:`TenantScope`. The scope is passed to each repository call, which
filters by tenant itself; on PostgreSQL the same tenant id is also written to
the transaction-local ``app.tenant_id`` setting so row-level security
re-enforces the predicate independently. The setting is cleared when the
transaction ends and again on every pool checkout, so a pooled connection can
never carry one request's tenant into another.

:func:`maintenance_session` is the narrow privileged path used by retention
pruning. It binds no tenant and instead assumes the maintenance role, whose
policies allow cross-tenant deletes on ``activity_logs`` only.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inboxvault.core.errors import IsolationViolation


logger = logging.getLogger(__name__)

TENANT_SETTING = "app.tenant_id"


@dataclass(frozen=True)
class TenantScope:
    tenant_id: UUID

    @classmethod
    def for_tenant(cls, tenant_id: UUID | str) -> TenantScope:
        if isinstance(tenant_id, UUID):
            return cls(tenant_id=tenant_id)
        try:
            return cls(tenant_id=UUID(str(tenant_id)))
        except ValueError as exc:
            # A malformed id cannot name any tenant; answer like any other miss.
            raise IsolationViolation("Resource not found") from exc

    @classmethod
    def new(cls) -> TenantScope:
        return cls(tenant_id=uuid4())


@dataclass(frozen=True)
class MaintenanceScope:
    purpose: str


def _is_postgres(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name == "postgresql"


async def _assume_role(session: AsyncSession, role: str) -> None:
    # Transaction-local SET ROLE; identifiers cannot be bound, set_config can.
    await session.execute(text("SELECT set_config('role', :role, true)"), {"role": role})


async def bind_tenant(session: AsyncSession, scope: TenantScope) -> None:
    if not _is_postgres(session):
        return
    await session.execute(
        text("SELECT set_config(:name, :value, true)"),
        {"name": TENANT_SETTING, "value": str(scope.tenant_id)},
    )


@asynccontextmanager
async def tenant_session(
    sessionmaker: async_sessionmaker[AsyncSession],
    scope: TenantScope,
    *,
    role: str | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a transaction bound to ``scope``; commit on success, roll back on any error or cancellation."""
    if not isinstance(scope, TenantScope):
        raise TypeError("tenant_session requires a TenantScope")
    async with sessionmaker() as session:
        async with session.begin():
            if role and _is_postgres(session):
                await _assume_role(session, role)
            await bind_tenant(session, scope)
            session.info["tenant_scope"] = scope
            yield session


@asynccontextmanager
async def maintenance_session(
    sessionmaker: async_sessionmaker[AsyncSession],
    scope: MaintenanceScope,
    *,
    role: str | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a privileged cross-tenant transaction for a named maintenance purpose."""
    logger.info("maintenance_session_opened purpose=%s role=%s", scope.purpose, role or "<login>")
    async with sessionmaker() as session:
        async with session.begin():
            if role and _is_postgres(session):
                await _assume_role(session, role)
            session.info["maintenance_scope"] = scope
            yield session
    logger.info("maintenance_session_closed purpose=%s", scope.purpose)
