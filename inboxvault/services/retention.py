from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inboxvault.core.errors import RetentionError
from inboxvault.domain.models import ActivityLog, MaintenanceRun
from inboxvault.persistence.db import Database
from inboxvault.persistence.tenancy import MaintenanceScope, maintenance_session


logger = logging.getLogger(__name__)

PRUNE_ACTIVITY_LOGS = "prune_activity_logs"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def retention_cutoff(retention_days: int, *, now: datetime | None = None) -> datetime:
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")
    return (now or _utc_now()) - timedelta(days=retention_days)


async def prune_activity_logs(
    session: AsyncSession,
    *,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    # Strictly older than the cutoff; a row exactly at the boundary survives this run.
    cutoff = retention_cutoff(retention_days, now=now)
    result = await session.execute(delete(ActivityLog).where(ActivityLog.created_at < cutoff))
    return int(result.rowcount or 0)


async def record_maintenance_run(
    session: AsyncSession,
    *,
    task: str,
    outcome: str,
    rows_affected: int,
    started_at: datetime,
    details_json: dict[str, object] | None = None,
) -> MaintenanceRun:
    row = MaintenanceRun(
        task=task,
        outcome=outcome,
        rows_affected=rows_affected,
        details_json=details_json,
        started_at=started_at,
        finished_at=_utc_now(),
    )
    session.add(row)
    await session.flush()
    return row


async def run_retention(
    database: Database,
    *,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Prune expired activity logs in one privileged transaction and audit the run."""
    started_at = _utc_now()
    scope = MaintenanceScope(purpose=PRUNE_ACTIVITY_LOGS)
    try:
        async with maintenance_session(
            database.maintenance_sessionmaker, scope, role=database.maintenance_role
        ) as session:
            deleted = await prune_activity_logs(session, retention_days=retention_days, now=now)
            await record_maintenance_run(
                session,
                task=PRUNE_ACTIVITY_LOGS,
                outcome="success",
                rows_affected=deleted,
                started_at=started_at,
                details_json={"retention_days": retention_days},
            )
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
        logger.error("retention_prune_failed retention_days=%s", retention_days, exc_info=exc)
        raise RetentionError("activity log pruning failed") from exc
    logger.info("retention_prune_completed deleted=%s retention_days=%s", deleted, retention_days)
    return deleted


async def run_retention_loop(
    database: Database,
    *,
    retention_days: int,
    interval_s: int,
) -> None:
    # Failures are contained here and retried on the next tick; the host process keeps running.
    interval = max(60, int(interval_s))
    while True:
        try:
            await run_retention(database, retention_days=retention_days)
        except RetentionError:
            logger.warning("retention_cycle_failed retry_in_s=%s", interval)
        except Exception:
            logger.exception("retention_cycle_crashed retry_in_s=%s", interval)
        await asyncio.sleep(interval)
