from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
import sys
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from inboxvault.core.config import AppConfig, load_config
from inboxvault.core.errors import ConfigurationError, CryptoError
from inboxvault.domain.models import TENANT_SCOPED_TABLES
from inboxvault.persistence.db import Database
from inboxvault.services.crypto.cipher import CredentialCipher

_VERSIONS_DIR = Path(__file__).resolve().parents[1] / "inboxvault" / "persistence" / "alembic" / "versions"


def _latest_revision() -> str | None:
    # Resolve repository head revision directly from migration files for deterministic checks.
    versions = sorted(_VERSIONS_DIR.glob("*.py"))
    if not versions:
        return None
    for line in versions[-1].read_text(encoding="utf-8").splitlines():
        if line.startswith("revision ="):
            return line.split("=", 1)[1].strip().strip('"')
    return None


def _check_cipher(config: AppConfig) -> dict[str, Any]:
    # Round-trip a fixed value so a broken key ring fails here instead of on first login.
    try:
        cipher = CredentialCipher.from_config(config)
        ok = cipher.open(cipher.seal("preflight")) == "preflight"
    except CryptoError as exc:
        return {"check": "token_cipher_round_trip", "status": "fail", "detail": {"error": type(exc).__name__}}
    return {
        "check": "token_cipher_round_trip",
        "status": "pass" if ok else "fail",
        "detail": {"active_key_id": cipher.active_key_id},
    }


async def _check_database(config: AppConfig) -> list[dict[str, Any]]:
    database = Database.from_config(config)
    results: list[dict[str, Any]] = []
    try:
        async with database.engine.connect() as connection:
            db_rev = (
                await connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1"))
            ).scalar_one_or_none()
            head_rev = _latest_revision()
            results.append(
                {
                    "check": "alembic_current_matches_head",
                    "status": "pass" if db_rev == head_rev else "fail",
                    "detail": {"db_revision": db_rev, "head_revision": head_rev},
                }
            )
            rows = (
                await connection.execute(
                    text(
                        "SELECT relname, relrowsecurity, relforcerowsecurity FROM pg_class "
                        "WHERE relname = ANY(:tables) AND relkind = 'r'"
                    ),
                    {"tables": list(("tenants",) + TENANT_SCOPED_TABLES)},
                )
            ).all()
            unprotected = sorted(
                {"tenants", *TENANT_SCOPED_TABLES}
                - {row.relname for row in rows if row.relrowsecurity and row.relforcerowsecurity}
            )
            results.append(
                {
                    "check": "row_level_security_forced",
                    "status": "pass" if not unprotected else "fail",
                    "detail": {"unprotected": unprotected},
                }
            )
            wanted = [role for role in (database.tenant_role, database.maintenance_role) if role]
            present = (
                await connection.execute(
                    text("SELECT rolname FROM pg_roles WHERE rolname = ANY(:roles)"), {"roles": wanted}
                )
            ).scalars().all()
            missing = sorted(set(wanted) - set(present))
            results.append(
                {
                    "check": "database_roles_present",
                    "status": "pass" if not missing else "fail",
                    "detail": {"missing": missing},
                }
            )
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
        results.append({"check": "database_reachable", "status": "fail", "detail": {"error": type(exc).__name__}})
    finally:
        await database.dispose()
    return results


async def run_preflight(*, output_json: str | None, skip_database: bool) -> int:
    try:
        config = load_config()
    except ConfigurationError as exc:
        check = {"check": "configuration_valid", "status": "fail", "detail": {"violations": list(exc.violations)}}
        summary = {"status": "fail", "checks": [check]}
        print(json.dumps(summary, indent=2, sort_keys=True))
        return 1

    results: list[dict[str, Any]] = [
        {"check": "configuration_valid", "status": "pass", "detail": {"env": config.env}},
        _check_cipher(config),
    ]
    if not skip_database:
        results.extend(await _check_database(config))

    failed = [row for row in results if row["status"] == "fail"]
    summary = {"status": "pass" if not failed else "fail", "checks": results}
    if output_json:
        output_path = Path(output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8")
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0 if not failed else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate configuration, key material and database guards.")
    parser.add_argument("--output-json", default=None)
    parser.add_argument("--skip-database", action="store_true", help="only validate configuration and keys")
    args = parser.parse_args()
    return asyncio.run(run_preflight(output_json=args.output_json, skip_database=args.skip_database))


if __name__ == "__main__":
    sys.exit(main())
