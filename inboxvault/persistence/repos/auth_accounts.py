from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.core.errors import IsolationViolation
from inboxvault.domain.models import AuthAccount
from inboxvault.persistence.guards import ensure_in_scope, require_scope, tenant_predicate
from inboxvault.persistence.tenancy import TenantScope


async def create_account(
    session: AsyncSession,
    scope: TenantScope,
    *,
    user_id: UUID,
    provider: str,
    provider_account_id: str,
    scopes: str | None = None,
) -> AuthAccount:
    resolved = require_scope(scope)
    account = AuthAccount(
        tenant_id=resolved.tenant_id,
        user_id=user_id,
        provider=provider,
        provider_account_id=provider_account_id,
        scopes=scopes,
    )
    session.add(account)
    await session.flush()
    return account


async def add_account(session: AsyncSession, scope: TenantScope, account: AuthAccount) -> AuthAccount:
    # Accept a caller-built row only when it belongs to the active tenant.
    ensure_in_scope(account, scope)
    session.add(account)
    await session.flush()
    return account


async def get_account(session: AsyncSession, scope: TenantScope, account_id: UUID) -> AuthAccount | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(AuthAccount).where(AuthAccount.id == account_id, tenant_predicate(AuthAccount, scope))
    )
    return result.scalar_one_or_none()


async def require_account(session: AsyncSession, scope: TenantScope, account_id: UUID) -> AuthAccount:
    account = await get_account(session, scope, account_id)
    if account is None:
        raise IsolationViolation("Resource not found")
    return account


async def list_accounts(
    session: AsyncSession, scope: TenantScope, *, user_id: UUID | None = None
) -> list[AuthAccount]:
    stmt = select(AuthAccount).where(tenant_predicate(AuthAccount, scope))
    if user_id is not None:
        stmt = stmt.where(AuthAccount.user_id == user_id)
    result = await session.execute(stmt.order_by(AuthAccount.created_at, AuthAccount.id))
    return list(result.scalars().all())


async def delete_account(session: AsyncSession, scope: TenantScope, account_id: UUID) -> bool:
    account = await get_account(session, scope, account_id)
    if account is None:
        return False
    await session.delete(account)
    await session.flush()
    return True
