from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_engine_factory, require_cron
from app.core.config import settings
from app.core.logging import get_logger
from app.db.session_async import commit, get_async_db, rollback
from app.schemas.recovery import CronRunResponse, ScanSummary
from app.services import recovery_scan
from app.services.recovery_scan import EngineFactory
from app.tasks.recovery import run_recovery_scan_task

router = APIRouter(prefix="/cron", tags=["cron"])

logger = get_logger("app.recovery")


@router.get("/cart-recovery", response_model=CronRunResponse, dependencies=[Depends(require_cron)])
async def run_cart_recovery(
    db: AsyncSession = Depends(get_async_db),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    try:
        if settings.CELERY_TASK_ALWAYS_EAGER:
            summary = await recovery_scan.run_recovery_scan(db, engine_factory=engine_factory)
            await commit(db)
        else:
            async_result = run_recovery_scan_task.delay()
            # AsyncResult.get bloquea; fuera del event loop
            payload = await run_in_threadpool(async_result.get, timeout=settings.TASK_RESULT_TIMEOUT)
            summary = ScanSummary.model_validate(payload)
    except Exception as exc:
        await rollback(db)
        logger.exception("recovery_scan_failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Cart recovery process failed", "error": str(exc)},
        )

    return CronRunResponse(results=summary, timestamp=datetime.now(timezone.utc))
