from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from inboxvault.core.config import AppConfig
from inboxvault.persistence.tenancy import TENANT_SETTING


logger = logging.getLogger(__name__)


def _reset_tenant_on_checkout(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
    # Clear any session-level tenant binding before a pooled connection is reused.
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(f"SELECT set_config('{TENANT_SETTING}', '', false)")
    finally:
        cursor.close()


def create_engine_for(url: str, *, pool_size: int = 10, max_overflow: int = 10) -> AsyncEngine:
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded pools for server databases; SQLite is only used by tests.
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(pool_size))
        engine_kwargs["max_overflow"] = max(0, int(max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
    engine = create_async_engine(url, **engine_kwargs)
    if engine.dialect.name == "postgresql":
        event.listen(engine.sync_engine, "checkout", _reset_tenant_on_checkout)
    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@dataclass
class Database:
    """Engines and session factories for the tenant path and the maintenance path."""

    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    maintenance_engine: AsyncEngine
    maintenance_sessionmaker: async_sessionmaker[AsyncSession]
    tenant_role: str | None = None
    maintenance_role: str | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> Database:
        db = config.db
        engine = create_engine_for(db.url, pool_size=db.pool_size, max_overflow=db.max_overflow)
        if db.maintenance_url and db.maintenance_url != db.url:
            # Maintenance traffic is rare; a small dedicated pool is enough.
            maintenance_engine = create_engine_for(db.maintenance_url, pool_size=1, max_overflow=1)
        else:
            maintenance_engine = engine
        return cls(
            engine=engine,
            sessionmaker=create_sessionmaker(engine),
            maintenance_engine=maintenance_engine,
            maintenance_sessionmaker=create_sessionmaker(maintenance_engine),
            tenant_role=db.tenant_role,
            maintenance_role=db.maintenance_role,
        )

    async def dispose(self) -> None:
        await self.engine.dispose()
        if self.maintenance_engine is not self.engine:
            await self.maintenance_engine.dispose()
