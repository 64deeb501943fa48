from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.celery_app import celery_app
from app.db.session_async import run_in_transaction
from app.services import recovery_scan


async def _scan(session: AsyncSession) -> dict:
    summary = await recovery_scan.run_recovery_scan(session)
    # Por nombre de campo: el endpoint cron re-valida con ScanSummary.
    return summary.model_dump(mode="json")


def _run_sync() -> dict:
    return asyncio.run(run_in_transaction(_scan))


@celery_app.task(name="recovery.scan")
def run_recovery_scan_task() -> dict:
    return _run_sync()
