from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.core.errors import TenantPredicateError
from inboxvault.domain.models import Tenant, User
from inboxvault.persistence.guards import require_scope, tenant_predicate
from inboxvault.persistence.tenancy import TenantScope


async def create_tenant(
    session: AsyncSession,
    scope: TenantScope,
    *,
    name: str,
    slug: str,
    plan: str | None = None,
) -> Tenant:
    # The tenant row id is the scope id, so the tenants policy admits the insert.
    resolved = require_scope(scope)
    tenant = Tenant(id=resolved.tenant_id, name=name, slug=slug, plan=plan)
    session.add(tenant)
    await session.flush()
    return tenant


async def get_tenant(session: AsyncSession, scope: TenantScope) -> Tenant | None:
    resolved = require_scope(scope)
    result = await session.execute(select(Tenant).where(Tenant.id == resolved.tenant_id))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    scope: TenantScope,
    *,
    email: str,
    name: str | None = None,
    role: str = "member",
) -> User:
    resolved = require_scope(scope)
    user = User(tenant_id=resolved.tenant_id, email=email, name=name, role=role)
    session.add(user)
    await session.flush()
    return user


async def get_user(session: AsyncSession, scope: TenantScope, user_id: UUID) -> User | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(User).where(User.id == user_id, tenant_predicate(User, scope))
    )
    return result.scalar_one_or_none()


async def list_tenant_ids(session: AsyncSession) -> list[UUID]:
    # Cross-tenant listing; only meaningful inside a maintenance session.
    if "maintenance_scope" not in session.info:
        raise TenantPredicateError("Tenant listing requires a maintenance session")
    result = await session.execute(select(Tenant.id).order_by(Tenant.created_at, Tenant.id))
    return list(result.scalars().all())
