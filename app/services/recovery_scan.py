from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.metrics import record_scan_duration
from app.domain.enums import RecoveryEvent, RecoveryStatus
from app.domain.recovery import next_status, statuses_for
from app.models.cart import Cart
from app.models.store import Store
from app.schemas.cart import CartActionResult, StorePipelineResponse
from app.schemas.recovery import ScanSummary, StoreScanResult
from app.services import recovery_events as ev
from app.services.recovery_engine import RecoveryEngine, build_recovery_engine

EngineFactory = Callable[..., Awaitable[RecoveryEngine]]

# Fases en orden: detectar -> notificar -> seguimiento -> expirar.
# Cada una hace commit para que la siguiente vea las transiciones.


def _thresholds(now: datetime) -> tuple[datetime, datetime, datetime]:
    return (
        now - timedelta(minutes=settings.RECOVERY_ABANDON_AFTER_MINUTES),
        now - timedelta(hours=settings.RECOVERY_FOLLOW_UP_AFTER_HOURS),
        now - timedelta(hours=settings.RECOVERY_LOST_AFTER_HOURS),
    )


async def _isolated(
    db: AsyncSession,
    events: ev.RecoveryEventSink,
    store_id: uuid.UUID,
    cart_id: uuid.UUID,
    action: Callable[[], Awaitable[str]],
) -> str:
    """Run one cart's work in its own commit; a failure only costs that cart."""
    try:
        status = await action()
        await db.commit()
        return status
    except Exception as exc:
        await db.rollback()
        events.emit(ev.CART_ERROR, store_id=store_id, cart_id=cart_id, error=repr(exc))
        return "error"


async def notify_abandoned(
    db: AsyncSession, engine: RecoveryEngine, *, now: datetime
) -> list[CartActionResult]:
    abandon_cutoff, _, _ = _thresholds(now)
    cart_ids = (
        await db.scalars(
            select(Cart.id)
            .where(
                Cart.store_id == engine.store_id,
                Cart.updated_at < abandon_cutoff,
                Cart.recovery_status == RecoveryStatus.NONE,
                Cart.customer_phone.isnot(None),
            )
            .order_by(Cart.updated_at)
        )
    ).all()

    results = []
    for cart_id in cart_ids:

        async def action(cart_id=cart_id) -> str:
            await engine.mark_abandoned(cart_id, at=now)
            await db.commit()
            sent = await engine.send_recovery_message(cart_id)
            return "notified" if sent else "failed"

        status = await _isolated(db, engine.events, engine.store_id, cart_id, action)
        results.append(CartActionResult(cart_id=cart_id, status=status))
    return results


async def send_follow_ups(
    db: AsyncSession, engine: RecoveryEngine, *, now: datetime
) -> list[CartActionResult]:
    _, follow_up_cutoff, _ = _thresholds(now)
    cart_ids = (
        await db.scalars(
            select(Cart.id)
            .where(
                Cart.store_id == engine.store_id,
                Cart.recovery_status == RecoveryStatus.NOTIFIED_FIRST,
                Cart.last_notified_at < follow_up_cutoff,
                Cart.customer_phone.isnot(None),
            )
            .order_by(Cart.last_notified_at)
        )
    ).all()

    results = []
    for cart_id in cart_ids:

        async def action(cart_id=cart_id) -> str:
            sent = await engine.send_recovery_message(cart_id)
            if not sent:
                return "failed"
            engine.events.emit(ev.FOLLOW_UP_SENT, store_id=engine.store_id, cart_id=cart_id)
            return "notified_final"

        status = await _isolated(db, engine.events, engine.store_id, cart_id, action)
        results.append(CartActionResult(cart_id=cart_id, status=status))
    return results


async def expire_notified(db: AsyncSession, engine: RecoveryEngine, *, now: datetime) -> int:
    _, _, lost_cutoff = _thresholds(now)
    result = await db.execute(
        update(Cart)
        .where(
            Cart.store_id == engine.store_id,
            Cart.recovery_status.in_(statuses_for(RecoveryEvent.EXPIRED)),
            Cart.last_notified_at < lost_cutoff,
        )
        .values(
            recovery_status=next_status(RecoveryStatus.NOTIFIED_FINAL, RecoveryEvent.EXPIRED),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    lost = result.rowcount or 0
    engine.events.emit(ev.CARTS_LOST, store_id=engine.store_id, amount=lost)
    return lost


async def run_store_pipeline(
    db: AsyncSession, engine: RecoveryEngine, *, now: datetime | None = None
) -> StorePipelineResponse:
    """Detect, notify, follow up and expire carts for the engine's store."""
    now = now or datetime.now(timezone.utc)
    abandoned = await notify_abandoned(db, engine, now=now)
    follow_up = await send_follow_ups(db, engine, now=now)
    lost = await expire_notified(db, engine, now=now)
    return StorePipelineResponse(abandoned=abandoned, follow_up=follow_up, lost=lost)


async def scan_store(
    db: AsyncSession,
    store_id: Any,
    *,
    now: datetime | None = None,
    engine_factory: EngineFactory = build_recovery_engine,
    events: ev.ScanRecorder | None = None,
) -> StoreScanResult:
    recorder = events or ev.ScanRecorder()
    now = now or datetime.now(timezone.utc)

    engine = await engine_factory(db, store_id, events=recorder)
    async with engine:
        await engine.import_abandoned_carts()
        await db.commit()
        await run_store_pipeline(db, engine, now=now)
        stats = await engine.get_recovery_stats()

    return recorder.store_result(engine.store_id, recovered=stats.recovered)


async def list_scannable_store_ids(db: AsyncSession) -> list[uuid.UUID]:
    return list(
        (
            await db.scalars(
                select(Store.id)
                .where(
                    Store.is_active.is_(True),
                    Store.shopify_access_token.isnot(None),
                    Store.shopify_store_url.isnot(None),
                )
                .order_by(Store.created_at)
            )
        ).all()
    )


async def run_recovery_scan(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    engine_factory: EngineFactory = build_recovery_engine,
    events: ev.ScanRecorder | None = None,
) -> ScanSummary:
    """One scan pass over every eligible store.

    A failing store is recorded as a ``store_error`` event and the pass moves
    on to the next one.
    """
    started = time.perf_counter()
    recorder = events or ev.ScanRecorder()
    now = now or datetime.now(timezone.utc)

    store_ids = await list_scannable_store_ids(db)
    recorder.logger.info("recovery_scan_started", extra={"stores": len(store_ids)})

    recovered = 0
    for store_id in store_ids:
        try:
            result = await scan_store(db, store_id, now=now, engine_factory=engine_factory, events=recorder)
        except Exception as exc:
            await db.rollback()
            recorder.emit(ev.STORE_ERROR, store_id=store_id, error=repr(exc))
            continue
        recovered += result.recovered

    elapsed = time.perf_counter() - started
    record_scan_duration(elapsed)

    summary = ScanSummary(
        stores=len(store_ids),
        imported=recorder.count(ev.CART_IMPORTED),
        abandoned=recorder.count(ev.CART_ABANDONED),
        notified=recorder.count(ev.MESSAGE_SENT),
        follow_up=recorder.count(ev.FOLLOW_UP_SENT),
        recovered=recovered,
        lost=recorder.count(ev.CARTS_LOST),
        errors=recorder.count(ev.CART_ERROR) + recorder.count(ev.STORE_ERROR),
        duration_seconds=round(elapsed, 3),
        timestamp=datetime.now(timezone.utc),
    )
    recorder.logger.info(
        "recovery_scan_completed",
        extra=summary.model_dump(by_alias=True, mode="json"),
    )
    return summary
