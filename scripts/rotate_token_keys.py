from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import UUID

from inboxvault.core.config import load_config
from inboxvault.core.errors import ConfigurationError, CryptoError
from inboxvault.core.logging import configure_logging
from inboxvault.persistence.db import Database
from inboxvault.persistence.repos.tenants import list_tenant_ids
from inboxvault.persistence.tenancy import MaintenanceScope, TenantScope, maintenance_session, tenant_session
from inboxvault.services.credentials import reseal_tenant_credentials
from inboxvault.services.crypto.cipher import CredentialCipher


def _build_parser() -> argparse.ArgumentParser:
    # Rotation is two-phase: deploy the new active key with the old one in
    # TOKEN_ENCRYPTION_PREVIOUS_KEYS, run this, then drop the old key.
    parser = argparse.ArgumentParser(description="Re-seal stored credentials under the active token key")
    parser.add_argument(
        "--tenant",
        action="append",
        default=[],
        help="tenant id to re-seal (repeatable); defaults to every tenant",
    )
    return parser


async def _tenant_ids(database: Database, requested: list[str]) -> list[UUID]:
    if requested:
        return [TenantScope.for_tenant(value).tenant_id for value in requested]
    async with maintenance_session(
        database.maintenance_sessionmaker,
        MaintenanceScope(purpose="rotate_token_keys"),
        role=database.maintenance_role,
    ) as session:
        return await list_tenant_ids(session)


async def _rotate(requested: list[str]) -> int:
    config = load_config()
    configure_logging(config.app.log_level)
    cipher = CredentialCipher.from_config(config)
    database = Database.from_config(config)
    total = 0
    try:
        for tenant_id in await _tenant_ids(database, requested):
            scope = TenantScope.for_tenant(tenant_id)
            # One transaction per tenant; a failure leaves other tenants' work committed.
            async with tenant_session(database.sessionmaker, scope, role=database.tenant_role) as session:
                rewritten = await reseal_tenant_credentials(session, scope, cipher)
            print(f"tenant_id={tenant_id} resealed={rewritten}")
            total += rewritten
    finally:
        await database.dispose()
    print(f"active_key_id={cipher.active_key_id} resealed_total={total}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_rotate(args.tenant))
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except CryptoError as exc:
        print(f"rotate_token_keys failed: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
