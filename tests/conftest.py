# tests/conftest.py
import sys
from pathlib import Path

# --- Configuración del Path (sin cambios) ---
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Generator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-cart-recovery")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")

from app.main import app
from app.api.deps import get_engine_factory
from app.core.security import ADMIN_SCOPE, CRON_SCOPE, create_access_token
from app.db.session import Base
from app.db.session_async import AsyncSessionLocal
from app.domain.enums import RecoveryStatus
from app.models.cart import Cart
from app.models.product import Product, ProductMapping
from app.models.store import Store
from app.services.integrations import CommerceClientError, MessagingClientError
from app.services.integrations.shopify import RemoteCart, RemoteCheckout, RemoteLine
from app.services.recovery_engine import build_recovery_engine

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

sync_engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Fakes de integraciones ----------

class FakeCommerceClient:
    """In-memory stand-in for ShopifyClient."""

    def __init__(self, checkout_url: str = "https://test-shop.myshopify.com/checkouts/c1?key=abc"):
        self.carts: dict[str, list[RemoteLine]] = {}
        self.checkouts: list[RemoteCheckout] = []
        self.checkout_url = checkout_url
        self.fail_update = False
        self.fail_create = False
        self.fail_checkouts = False
        self.calls: list[tuple[str, Any]] = []

    async def create_cart(self, lines, *, buyer_email=None, buyer_phone=None) -> str:
        self.calls.append(("create", buyer_phone))
        if self.fail_create:
            raise CommerceClientError("cartCreate failed")
        cart_id = f"gid://shopify/Cart/{len(self.carts) + 1}"
        self.carts[cart_id] = list(lines)
        return cart_id

    async def update_cart_lines(self, cart_id, lines) -> None:
        self.calls.append(("update", cart_id))
        if self.fail_update or cart_id not in self.carts:
            raise CommerceClientError(f"cartLinesUpdate failed for {cart_id}")
        self.carts[cart_id] = list(lines)

    async def get_cart(self, cart_id) -> RemoteCart | None:
        lines = self.carts.get(cart_id)
        if lines is None:
            return None
        return RemoteCart(id=cart_id, lines=list(lines))

    async def get_checkout_url(self, cart_id) -> str | None:
        return self.checkout_url if cart_id in self.carts else None

    async def get_abandoned_checkouts(self) -> list[RemoteCheckout]:
        if self.fail_checkouts:
            raise CommerceClientError("checkouts.json returned 500")
        return list(self.checkouts)


class FakeMessagingClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str, bool]] = []

    async def send_text(self, to, body, *, preview_url=True) -> str | None:
        if self.fail:
            raise MessagingClientError("WhatsApp error 401")
        self.sent.append((to, body, preview_url))
        return f"wamid.{len(self.sent)}"


# ---------- Fixtures ----------
@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Crea las tablas en SQLite solo una vez por sesión de tests."""
    Base.metadata.create_all(bind=sync_engine)
    yield
    Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with sync_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, Any, None]:
    """Provee una sesión corta para preparar datos."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest_asyncio.fixture(scope="function")
async def client():
    """Provee un AsyncClient enlazado a la app."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_db_session() -> AsyncSession:
    """Provee una AsyncSession para pruebas asíncronas directas."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


# --- Integraciones falsas inyectadas por el factory del engine ---

@pytest.fixture
def fake_commerce() -> FakeCommerceClient:
    return FakeCommerceClient()


@pytest.fixture
def fake_messaging() -> FakeMessagingClient:
    return FakeMessagingClient()


@pytest.fixture
def engine_factory(fake_commerce: FakeCommerceClient, fake_messaging: FakeMessagingClient):
    async def factory(db, store_id, **kwargs):
        return await build_recovery_engine(
            db,
            store_id,
            commerce_client=fake_commerce,
            messaging_client=fake_messaging,
            **kwargs,
        )

    return factory


@pytest.fixture
def override_engine_factory(engine_factory):
    app.dependency_overrides[get_engine_factory] = lambda: engine_factory
    return engine_factory


# --- Datos: tienda, productos y mappings ---

@pytest.fixture
def store(db_session: Session) -> Store:
    store = Store(
        name="Test Store",
        shopify_store_url="test-shop.myshopify.com",
        shopify_access_token="storefront-token",
        whatsapp_phone_number_id="1098765432",
        whatsapp_access_token="wa-token",
    )
    db_session.add(store)
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def products(db_session: Session, store: Store) -> list[Product]:
    """Tres productos; los dos primeros mapeados a variantes 101 y 102."""
    items = [
        Product(store_id=store.id, name="Tee", price=Decimal("20.00"), images=["https://cdn.test/tee.jpg"]),
        Product(store_id=store.id, name="Hoodie", price=Decimal("50.00"), images=[]),
        Product(store_id=store.id, name="Socks", price=Decimal("5.00"), images=[]),
    ]
    db_session.add_all(items)
    db_session.flush()
    db_session.add_all(
        [
            ProductMapping(store_id=store.id, product_id=items[0].id, shopify_variant_id="101"),
            ProductMapping(store_id=store.id, product_id=items[1].id, shopify_variant_id="102"),
        ]
    )
    db_session.commit()
    for item in items:
        db_session.refresh(item)
    return items


def cart_item(product: Product, quantity: int = 1) -> dict[str, Any]:
    return {
        "id": str(product.id),
        "name": product.name,
        "price": float(product.price),
        "quantity": quantity,
        "image": product.images[0] if product.images else None,
    }


@pytest.fixture
def make_cart(db_session: Session, store: Store, products: list[Product]):
    """Factory de carritos; por defecto Tee x2 + Hoodie x1, teléfono cargado."""

    def _make(**overrides: Any) -> Cart:
        items = overrides.pop("items", None)
        if items is None:
            items = [cart_item(products[0], 2), cart_item(products[1], 1)]
        values: dict[str, Any] = {
            "store_id": store.id,
            "customer_name": "Ana",
            "customer_email": "ana@example.com",
            "customer_phone": "+5491100000000",
            "items": items,
            "total": sum(item["price"] * item["quantity"] for item in items),
            "recovery_status": RecoveryStatus.NONE,
        }
        values.update(overrides)
        cart = Cart(**values)
        db_session.add(cart)
        db_session.commit()
        db_session.refresh(cart)
        return cart

    return _make


async def reload_cart(cart_id) -> Cart:
    """Lee el carrito con una sesión nueva (lo que quedó commiteado)."""
    async with AsyncSessionLocal() as session:
        return await session.get(Cart, cart_id)


def hours_ago(hours: float) -> datetime:
    return utcnow() - timedelta(hours=hours)


# --- Tokens ---

@pytest.fixture
def admin_token() -> str:
    return create_access_token("ops@example.com", [ADMIN_SCOPE])


@pytest.fixture
def cron_token() -> str:
    return create_access_token("scheduler", [CRON_SCOPE])


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
