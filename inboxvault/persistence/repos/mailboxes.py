from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.domain.models import Mailbox
from inboxvault.persistence.guards import ensure_in_scope, require_scope, tenant_predicate
from inboxvault.persistence.tenancy import TenantScope


async def create_mailbox(
    session: AsyncSession,
    scope: TenantScope,
    *,
    email_address: str,
    provider: str = "google",
    user_id: UUID | None = None,
    is_primary: bool = False,
) -> Mailbox:
    resolved = require_scope(scope)
    mailbox = Mailbox(
        tenant_id=resolved.tenant_id,
        user_id=user_id,
        provider=provider,
        email_address=email_address,
        is_primary=is_primary,
    )
    session.add(mailbox)
    await session.flush()
    return mailbox


async def add_mailbox(session: AsyncSession, scope: TenantScope, mailbox: Mailbox) -> Mailbox:
    ensure_in_scope(mailbox, scope)
    session.add(mailbox)
    await session.flush()
    return mailbox


async def get_mailbox(session: AsyncSession, scope: TenantScope, mailbox_id: UUID) -> Mailbox | None:
    result = await session.execute(
        select(Mailbox).where(Mailbox.id == mailbox_id, tenant_predicate(Mailbox, scope))
    )
    return result.scalar_one_or_none()


async def list_mailboxes(session: AsyncSession, scope: TenantScope) -> list[Mailbox]:
    result = await session.execute(
        select(Mailbox).where(tenant_predicate(Mailbox, scope)).order_by(Mailbox.created_at, Mailbox.id)
    )
    return list(result.scalars().all())
