from __future__ import annotations

import uuid
from typing import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import RecoveryStatus
from app.models.cart import Cart
from app.models.product import Product, ProductMapping
from app.models.store import Store
from app.schemas.store import IntegrationStatus, IntegrationUpdate, ProductMappingCreate
from app.services.exceptions import ConflictError, DomainValidationError, ResourceNotFoundError
from app.services.integrations.shopify import from_variant_gid

_CREDENTIAL_FIELDS = tuple(IntegrationUpdate.model_fields)


async def get_store(db: AsyncSession, store_id: uuid.UUID) -> Store:
    store = await db.get(Store, store_id)
    if store is None:
        raise ResourceNotFoundError(f"Store {store_id} not found")
    return store


async def get_integration_status(db: AsyncSession, store_id: uuid.UUID) -> IntegrationStatus:
    store = await get_store(db, store_id)
    products = await db.scalar(select(func.count()).select_from(Product).where(Product.store_id == store.id))
    mapped = await db.scalar(
        select(func.count()).select_from(ProductMapping).where(ProductMapping.store_id == store.id)
    )
    return IntegrationStatus(
        store_id=store.id,
        shopify_connected=store.shopify_configured,
        shopify_store_url=store.shopify_store_url,
        whatsapp_connected=store.whatsapp_configured,
        products=products or 0,
        products_mapped=mapped or 0,
    )


async def update_integration(
    db: AsyncSession, store_id: uuid.UUID, changes: IntegrationUpdate
) -> IntegrationStatus:
    store = await get_store(db, store_id)
    data = changes.model_dump(exclude_unset=True)
    if data.get("shopify_store_url"):
        data["shopify_store_url"] = data["shopify_store_url"].strip().rstrip("/")
    for field, value in data.items():
        setattr(store, field, value or None)
    await db.flush()
    return await get_integration_status(db, store.id)


async def disconnect_integration(db: AsyncSession, store_id: uuid.UUID) -> None:
    """Clear Shopify and WhatsApp credentials and drop the store's product mappings."""
    store = await get_store(db, store_id)
    for field in _CREDENTIAL_FIELDS:
        setattr(store, field, None)
    # Los variant ids pertenecen a la tienda Shopify desconectada.
    await db.execute(delete(ProductMapping).where(ProductMapping.store_id == store.id))
    await db.flush()


async def list_product_mappings(db: AsyncSession, store_id: uuid.UUID) -> list[ProductMapping]:
    await get_store(db, store_id)
    result = await db.scalars(
        select(ProductMapping)
        .where(ProductMapping.store_id == store_id)
        .order_by(ProductMapping.created_at)
    )
    return list(result.all())


async def create_product_mapping(
    db: AsyncSession, store_id: uuid.UUID, payload: ProductMappingCreate
) -> ProductMapping:
    await get_store(db, store_id)

    product = await db.get(Product, payload.product_id)
    if product is None or product.store_id != store_id:
        raise ResourceNotFoundError(f"Product {payload.product_id} not found")

    variant_id = from_variant_gid(payload.shopify_variant_id.strip())
    duplicate = await db.scalar(
        select(ProductMapping.id).where(
            ProductMapping.store_id == store_id,
            (ProductMapping.product_id == product.id) | (ProductMapping.shopify_variant_id == variant_id),
        )
    )
    if duplicate is not None:
        raise ConflictError("Product or variant already mapped for this store")

    mapping = ProductMapping(store_id=store_id, product_id=product.id, shopify_variant_id=variant_id)
    db.add(mapping)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Product or variant already mapped for this store") from exc
    await db.refresh(mapping)
    return mapping


async def delete_product_mapping(db: AsyncSession, store_id: uuid.UUID, mapping_id: uuid.UUID) -> None:
    mapping = await db.get(ProductMapping, mapping_id)
    if mapping is None or mapping.store_id != store_id:
        raise ResourceNotFoundError("Product mapping not found")
    await db.delete(mapping)
    await db.flush()


def parse_statuses(raw: str | None) -> list[RecoveryStatus]:
    """``"ABANDONED,NOTIFIED_FIRST"`` -> statuses; empty means every status."""
    if not raw:
        return []
    statuses = []
    for token in raw.split(","):
        token = token.strip().upper()
        if not token:
            continue
        try:
            statuses.append(RecoveryStatus(token))
        except ValueError as exc:
            raise DomainValidationError(f"Unknown recovery status: {token}") from exc
    return statuses


async def list_carts(
    db: AsyncSession,
    store_id: uuid.UUID,
    *,
    statuses: Iterable[RecoveryStatus] = (),
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Cart], int]:
    await get_store(db, store_id)

    filters = [Cart.store_id == store_id]
    statuses = list(statuses)
    if statuses:
        filters.append(Cart.recovery_status.in_(statuses))

    total = await db.scalar(select(func.count()).select_from(Cart).where(*filters))
    result = await db.scalars(
        select(Cart).where(*filters).order_by(Cart.updated_at.desc()).offset(offset).limit(limit)
    )
    return list(result.all()), total or 0
