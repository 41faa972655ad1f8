from __future__ import annotations

import asyncio
import sys

from inboxvault.core.config import load_config
from inboxvault.core.errors import ConfigurationError
from inboxvault.core.logging import configure_logging
from inboxvault.persistence.db import Database
from inboxvault.services.retention import run_retention_loop


async def _main() -> None:
    # Dedicated process so pruning keeps its cadence without request traffic.
    config = load_config()
    configure_logging(config.app.log_level)
    database = Database.from_config(config)
    try:
        await run_retention_loop(
            database,
            retention_days=config.db.retention_days,
            interval_s=config.db.retention_interval_s,
        )
    finally:
        await database.dispose()


def main() -> int:
    try:
        asyncio.run(_main())
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
