from __future__ import annotations

import argparse
import asyncio
import sys

from inboxvault.core.config import load_config
from inboxvault.core.errors import ConfigurationError, RetentionError
from inboxvault.core.logging import configure_logging
from inboxvault.persistence.db import Database
from inboxvault.services.retention import run_retention


async def _prune(retention_days: int | None) -> int:
    config = load_config()
    configure_logging(config.app.log_level)
    database = Database.from_config(config)
    try:
        deleted = await run_retention(database, retention_days=retention_days or config.db.retention_days)
    finally:
        await database.dispose()
    print(f"pruned_activity_logs={deleted}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete activity logs older than the retention window.")
    parser.add_argument("--days", type=int, default=None, help="override RETENTION_DAYS for this run")
    args = parser.parse_args()
    if args.days is not None and args.days < 1:
        parser.error("--days must be at least 1")
    try:
        return asyncio.run(_prune(args.days))
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except RetentionError as exc:
        print(f"prune_activity_logs failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
