"""Seed script for a development store with products and Shopify variant mappings."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

# Ensure project root is on PYTHONPATH when running as a script.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import select

from app.core.config import settings
from app.db.session_async import AsyncSessionLocal
from app.models.product import Product, ProductMapping
from app.models.store import Store


@dataclass(frozen=True, slots=True)
class ProductSeed:
    name: str
    price: float
    variant_id: str | None
    image: str | None = None


DEV_STORE_NAME = "Dev Store"

PRODUCTS: tuple[ProductSeed, ...] = (
    ProductSeed("Camiseta basica", 19.90, "44001", "https://cdn.example.com/tee.jpg"),
    ProductSeed("Buzo con capucha", 49.00, "44002", "https://cdn.example.com/hoodie.jpg"),
    ProductSeed("Gorra", 15.50, "44003"),
    # Sin mapping: sirve para probar el drop silencioso en el sync.
    ProductSeed("Medias", 7.25, None),
)


async def seed_dev_store() -> None:
    """Create the development store (idempotent by name) and its catalog."""
    logger = logging.getLogger("seed_dev_store")
    logger.info("Seeding development store into %s", settings.ASYNC_DATABASE_URL)

    async with AsyncSessionLocal() as session:
        store = await session.scalar(select(Store).where(Store.name == DEV_STORE_NAME))
        if store is not None:
            logger.info("Store %s already exists (%s), skipping", DEV_STORE_NAME, store.id)
            return

        store = Store(
            name=DEV_STORE_NAME,
            shopify_store_url="dev-store.myshopify.com",
            shopify_access_token="storefront-dev-token",
        )
        session.add(store)
        await session.flush()

        mapped = 0
        for seed in PRODUCTS:
            product = Product(
                store_id=store.id,
                name=seed.name,
                price=seed.price,
                images=[seed.image] if seed.image else [],
            )
            session.add(product)
            await session.flush()
            if seed.variant_id:
                session.add(ProductMapping(store_id=store.id, product_id=product.id, shopify_variant_id=seed.variant_id))
                mapped += 1

        await session.commit()

    logger.info("Seed completed: store %s, %s products, %s mapped", store.id, len(PRODUCTS), mapped)


async def main() -> None:
    await seed_dev_store()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
