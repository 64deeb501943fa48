from __future__ import annotations

import uuid
from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_engine_factory, require_admin
from app.db.session_async import commit, get_async_db
from app.models.cart import Cart
from app.schemas.cart import CartSyncRequest, CartSyncResponse, RecoveryMessageRequest
from app.schemas.pagination import PaginatedCarts
from app.services import recovery_scan, store_service
from app.services.exceptions import ResourceNotFoundError
from app.services.recovery_scan import EngineFactory

router = APIRouter(prefix="/carts", tags=["carts"])


@router.get("", response_model=PaginatedCarts, dependencies=[Depends(require_admin)])
async def list_carts(
    store_id: uuid.UUID,
    status_filter: str | None = Query(default=None, alias="status", description="Ej: ABANDONED,NOTIFIED_FIRST"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
):
    statuses = store_service.parse_statuses(status_filter)
    carts, total = await store_service.list_carts(db, store_id, statuses=statuses, limit=limit, offset=offset)
    return PaginatedCarts(total=total, limit=limit, offset=offset, items=carts)


@router.post("/sync", response_model=CartSyncResponse, dependencies=[Depends(require_admin)])
async def sync_cart(
    payload: CartSyncRequest,
    db: AsyncSession = Depends(get_async_db),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    engine = await engine_factory(db, payload.store_id)
    async with engine:
        if await engine.get_cart(payload.cart_id) is None:
            raise ResourceNotFoundError("Cart not found")
        outcome = await engine.sync_cart(payload.cart_id)
        await commit(db)

    if not outcome.ok:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to sync cart with Shopify")
    return CartSyncResponse(
        shopify_cart_id=outcome.remote_id,
        outcome=outcome.kind.value,
        dropped_items=outcome.dropped_items,
    )


@router.get("/sync", dependencies=[Depends(require_admin)])
async def sync_overview(
    store_id: uuid.UUID,
    action: Literal["import", "stats"] | None = None,
    db: AsyncSession = Depends(get_async_db),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    engine = await engine_factory(db, store_id)
    async with engine:
        if action == "import":
            imported = await engine.import_abandoned_carts()
            await commit(db)
            return {"success": True, "imported": imported}
        if action == "stats":
            stats = await engine.get_recovery_stats()
            return {"success": True, "stats": stats.model_dump(by_alias=True)}

        checkouts = await engine.list_remote_abandoned()
    return {"success": True, "carts": jsonable_encoder([asdict(checkout) for checkout in checkouts])}


@router.get("/recovery", include_in_schema=False)
async def recover_cart(
    cart_id: str | None = Query(default=None),
    code: str | None = Query(default=None),
    db: AsyncSession = Depends(get_async_db),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    """Landing del link enviado por WhatsApp: marca el carrito como recuperado y redirige al checkout."""
    if not cart_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Cart ID is required")
    try:
        cart_uuid = uuid.UUID(cart_id)
    except ValueError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid cart ID")

    cart = await db.get(Cart, cart_uuid)
    if cart is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Cart not found")

    if code and cart.discount_code and code != cart.discount_code:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid discount code")

    engine = await engine_factory(db, cart.store_id)
    async with engine:
        if not await engine.process_recovery(cart.id):
            raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process recovery")
        await commit(db)

        recovery_url = await engine.get_recovery_url(cart.id)
        await commit(db)

    if not recovery_url:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get recovery URL")
    return RedirectResponse(recovery_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.post("/recovery", dependencies=[Depends(require_admin)])
async def send_recovery(
    payload: RecoveryMessageRequest,
    db: AsyncSession = Depends(get_async_db),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    engine = await engine_factory(db, payload.store_id)
    async with engine:
        if payload.cart_id:
            sent = await engine.send_recovery_message(payload.cart_id)
            await commit(db)
            if not sent:
                raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to send recovery message")
            return {"success": True, "message": "Recovery message sent successfully"}

        result = await recovery_scan.run_store_pipeline(db, engine)
    return result.model_dump(by_alias=True, mode="json")
