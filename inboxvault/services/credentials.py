from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.domain.models import AuthAccount, Mailbox
from inboxvault.persistence.guards import require_scope
from inboxvault.persistence.repos.activity_logs import record_activity
from inboxvault.persistence.repos.auth_accounts import list_accounts
from inboxvault.persistence.repos.mailboxes import list_mailboxes
from inboxvault.persistence.tenancy import TenantScope
from inboxvault.services.crypto.cipher import CredentialCipher


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountTokens:
    refresh_token: str | None
    access_token: str | None
    expires_at: datetime | None

    def __repr__(self) -> str:
        return f"AccountTokens(expires_at={self.expires_at!r})"


def _seal_optional(cipher: CredentialCipher, value: str | None) -> str | None:
    if value is None:
        return None
    return cipher.seal(value)


def _open_optional(cipher: CredentialCipher, value: str | None) -> str | None:
    if value is None:
        return None
    return cipher.open(value)


def seal_account_tokens(
    account: AuthAccount,
    cipher: CredentialCipher,
    *,
    refresh_token: str | None,
    access_token: str | None,
    expires_at: datetime | None = None,
) -> None:
    # Sealing happens before the row is flushed, so plaintext never crosses the storage boundary.
    account.refresh_token_enc = _seal_optional(cipher, refresh_token)
    account.access_token_enc = _seal_optional(cipher, access_token)
    account.token_expires_at = expires_at
    account.key_id = cipher.active_key_id


def open_account_tokens(account: AuthAccount, cipher: CredentialCipher) -> AccountTokens:
    return AccountTokens(
        refresh_token=_open_optional(cipher, account.refresh_token_enc),
        access_token=_open_optional(cipher, account.access_token_enc),
        expires_at=account.token_expires_at,
    )


def clear_account_tokens(account: AuthAccount) -> None:
    # Unlinking overwrites the envelopes; nothing remains to decrypt.
    account.refresh_token_enc = None
    account.access_token_enc = None
    account.token_expires_at = None
    account.key_id = None


def seal_mailbox_token(mailbox: Mailbox, cipher: CredentialCipher, refresh_token: str | None) -> None:
    mailbox.refresh_token_enc = _seal_optional(cipher, refresh_token)
    mailbox.key_id = cipher.active_key_id if refresh_token is not None else None


def open_mailbox_token(mailbox: Mailbox, cipher: CredentialCipher) -> str | None:
    return _open_optional(cipher, mailbox.refresh_token_enc)


def _reseal(cipher: CredentialCipher, encoded: str | None) -> str | None:
    if encoded is None or not cipher.needs_reseal(encoded):
        return encoded
    return cipher.seal(cipher.open(encoded))


async def reseal_tenant_credentials(
    session: AsyncSession,
    scope: TenantScope,
    cipher: CredentialCipher,
) -> int:
    """Re-seal every envelope of one tenant that was not produced by the active key.

    Returns the number of rows rewritten. Old keys can be retired from the
    key ring once this has run for every tenant.
    """
    resolved = require_scope(scope)
    rewritten = 0
    for account in await list_accounts(session, resolved):
        refresh = _reseal(cipher, account.refresh_token_enc)
        access = _reseal(cipher, account.access_token_enc)
        if refresh != account.refresh_token_enc or access != account.access_token_enc:
            account.refresh_token_enc = refresh
            account.access_token_enc = access
            account.key_id = cipher.active_key_id
            rewritten += 1
    for mailbox in await list_mailboxes(session, resolved):
        refresh = _reseal(cipher, mailbox.refresh_token_enc)
        if refresh != mailbox.refresh_token_enc:
            mailbox.refresh_token_enc = refresh
            mailbox.key_id = cipher.active_key_id
            rewritten += 1
    if rewritten:
        await session.flush()
        await record_activity(
            session,
            resolved,
            action="credentials.resealed",
            entity_type="tenant",
            entity_id=resolved.tenant_id,
            after_fields={"rows": rewritten, "active_key_id": cipher.active_key_id},
        )
    logger.info("credentials_resealed tenant_id=%s rows=%s", resolved.tenant_id, rewritten)
    return rewritten
