from __future__ import annotations

from collections.abc import AsyncIterator
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
import pytest
import pytest_asyncio
from sqlalchemy import text

from inboxvault.persistence.db import Database, create_engine_for, create_sessionmaker

TEST_DATABASE_URL = os.environ.get("INBOXVAULT_TEST_DATABASE_URL")
APP_ROLE = "inboxvault_app"
MAINTENANCE_ROLE = "inboxvault_maintenance"
_ROOT = Path(__file__).resolve().parents[3]

requires_postgres = pytest.mark.skipif(
    not TEST_DATABASE_URL, reason="INBOXVAULT_TEST_DATABASE_URL is not set"
)


@pytest.fixture(scope="session")
def migrated_database() -> str:
    assert TEST_DATABASE_URL
    alembic_config = Config(str(_ROOT / "alembic.ini"))
    alembic_config.set_main_option("script_location", str(_ROOT / "inboxvault" / "persistence" / "alembic"))
    alembic_config.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.downgrade(alembic_config, "base")
    command.upgrade(alembic_config, "head")
    return TEST_DATABASE_URL

@pytest_asyncio.fixture
async def pg_database(migrated_database: str) -> AsyncIterator[Database]:
    # One pooled connection so checkout hygiene is observable across units of work.
    engine = create_engine_for(migrated_database, pool_size=1, max_overflow=0)
    async with engine.begin() as connection:
        await connection.execute(text("TRUNCATE tenants, maintenance_runs RESTART IDENTITY CASCADE"))
    sessionmaker = create_sessionmaker(engine)
    database = Database(
        engine=engine,
        sessionmaker=sessionmaker,
        maintenance_engine=engine,
        maintenance_sessionmaker=sessionmaker,
        tenant_role=APP_ROLE,
        maintenance_role=MAINTENANCE_ROLE,
    )
    yield database
    await engine.dispose()
