"""Per-store cart recovery engine.

``build_recovery_engine`` is the only way to obtain an engine: it loads the
store, checks its Shopify credentials and returns an engine bound to an
immutable :class:`StoreContext`. Remote failures never leave the engine;
they are reported through the event sink and turned into ``None``/``False``.
"""

from __future__ import annotations

import enum
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import RecoveryEvent, RecoveryStatus
from app.domain.recovery import can_apply, next_status
from app.models.cart import Cart
from app.models.product import Product, ProductMapping
from app.models.store import Store
from app.schemas.recovery import RecoveryStats
from app.services import recovery_events as ev
from app.services.exceptions import DomainValidationError, ResourceNotFoundError, StoreNotConfiguredError
from app.services.integrations import IntegrationError
from app.services.integrations.shopify import RemoteCart, RemoteCheckout, RemoteLine, ShopifyClient
from app.services.integrations.whatsapp import WhatsAppClient


class CommerceClient(Protocol):
    async def create_cart(
        self, lines: Iterable[RemoteLine], *, buyer_email: str | None = None, buyer_phone: str | None = None
    ) -> str: ...

    async def update_cart_lines(self, cart_id: str, lines: Iterable[RemoteLine]) -> None: ...

    async def get_cart(self, cart_id: str) -> RemoteCart | None: ...

    async def get_checkout_url(self, cart_id: str) -> str | None: ...

    async def get_abandoned_checkouts(self) -> list[RemoteCheckout]: ...


class MessagingClient(Protocol):
    async def send_text(self, to: str, body: str, *, preview_url: bool = True) -> str | None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise DomainValidationError(f"Invalid UUID for {field_name}") from exc


@dataclass(frozen=True)
class StoreContext:
    store_id: uuid.UUID
    name: str
    shopify_store_url: str
    shopify_access_token: str
    shopify_admin_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_access_token: str | None = None

    @property
    def messaging_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)


@dataclass(frozen=True)
class ItemMapping:
    """Result of translating items between the local and the remote representation.

    ``items`` holds what could be translated; ``unmapped`` the ids that were
    dropped (local product ids or remote variant ids, depending on direction).
    """

    items: list[Any] = field(default_factory=list)
    unmapped: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.unmapped)


class SyncKind(str, enum.Enum):
    UPDATED = "updated"
    CREATED = "created"
    RECREATED = "recreated"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncOutcome:
    kind: SyncKind
    remote_id: str | None = None
    dropped_items: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is not SyncKind.FAILED


def render_recovery_message(cart: Cart, store_name: str, recovery_url: str) -> str:
    greeting = f"Hi {cart.customer_name}!" if cart.customer_name else "Hi!"
    lines = "\n".join(
        f"• {item['name']} ({item['quantity']}x): ${float(item['price']):.2f}" for item in cart.items or []
    )
    total = float(cart.total or 0)

    if cart.discount_code:
        discount = float(cart.discount_amount or 0)
        if discount and total > 0:
            percent = math.floor(discount / total * 100 + 0.5)
            call_to_action = f"Use code {cart.discount_code} for {percent}% off! 🎉"
        else:
            call_to_action = f"Use code {cart.discount_code} at checkout! 🎉"
    else:
        call_to_action = "Would you like to complete your purchase?"

    return (
        f"{greeting} 👋\n\n"
        f"We noticed you left some items in your cart at {store_name}:\n\n"
        f"{lines}\n\n"
        f"Total: ${total:.2f}\n\n"
        f"{call_to_action}\n\n"
        f"Checkout now: {recovery_url}"
    )


def with_discount(url: str, discount_code: str | None) -> str:
    if not discount_code:
        return url
    return str(httpx.URL(url).copy_set_param("discount", discount_code))


class RecoveryEngine:
    def __init__(
        self,
        db: AsyncSession,
        context: StoreContext,
        commerce: CommerceClient,
        messaging: MessagingClient | None = None,
        events: ev.RecoveryEventSink | None = None,
        *,
        owned_clients: Iterable[Any] = (),
    ) -> None:
        self.db = db
        self.context = context
        self.commerce = commerce
        self.messaging = messaging
        self.events = events or ev.LoggingEventSink()
        self._owned_clients = list(owned_clients)

    async def aclose(self) -> None:
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients = []

    async def __aenter__(self) -> "RecoveryEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def store_id(self) -> uuid.UUID:
        return self.context.store_id

    def _emit(self, event: str, **fields: Any) -> None:
        self.events.emit(event, store_id=self.store_id, **fields)

    async def get_cart(self, cart_id: Any) -> Cart | None:
        cart = await self.db.get(Cart, _as_uuid(cart_id, "cart_id"))
        if cart is None or cart.store_id != self.store_id:
            return None
        return cart

    # --- item mapping ---

    async def map_items_to_remote(self, items: list[dict[str, Any]]) -> ItemMapping:
        product_ids = []
        for item in items:
            try:
                product_ids.append(uuid.UUID(str(item["id"])))
            except (KeyError, ValueError):
                continue

        variants: dict[uuid.UUID, str] = {}
        if product_ids:
            rows = await self.db.execute(
                select(ProductMapping.product_id, ProductMapping.shopify_variant_id).where(
                    ProductMapping.store_id == self.store_id,
                    ProductMapping.product_id.in_(product_ids),
                )
            )
            variants = {product_id: variant_id for product_id, variant_id in rows.all()}

        lines: list[RemoteLine] = []
        unmapped: list[str] = []
        for item in items:
            variant_id = None
            try:
                variant_id = variants.get(uuid.UUID(str(item.get("id"))))
            except ValueError:
                pass
            if variant_id is None:
                unmapped.append(str(item.get("id")))
                self._emit(ev.ITEM_UNMAPPED, product_id=item.get("id"), direction="to_remote")
                continue
            lines.append(RemoteLine(variant_id=variant_id, quantity=int(item["quantity"])))
        return ItemMapping(items=lines, unmapped=unmapped)

    async def map_lines_to_local(self, lines: list[RemoteLine]) -> ItemMapping:
        variant_ids = {line.variant_id for line in lines}
        products: dict[str, Product] = {}
        if variant_ids:
            rows = await self.db.execute(
                select(ProductMapping.shopify_variant_id, Product)
                .join(Product, Product.id == ProductMapping.product_id)
                .where(
                    ProductMapping.store_id == self.store_id,
                    ProductMapping.shopify_variant_id.in_(variant_ids),
                )
            )
            products = {variant_id: product for variant_id, product in rows.all()}

        items: list[dict[str, Any]] = []
        unmapped: list[str] = []
        for line in lines:
            product = products.get(line.variant_id)
            if product is None:
                unmapped.append(line.variant_id)
                self._emit(ev.ITEM_UNMAPPED, variant_id=line.variant_id, direction="to_local")
                continue
            items.append(
                {
                    "id": str(product.id),
                    "name": product.name,
                    "price": float(product.price),
                    "quantity": line.quantity,
                    "image": product.images[0] if product.images else None,
                }
            )
        return ItemMapping(items=items, unmapped=unmapped)

    # --- remote cart sync ---

    async def sync_cart(self, cart_id: Any) -> SyncOutcome:
        cart = await self.get_cart(cart_id)
        if cart is None:
            return SyncOutcome(SyncKind.FAILED, error="Cart not found")

        mapping = await self.map_items_to_remote(cart.items or [])

        update_failed = False
        if cart.shopify_cart_id:
            try:
                await self.commerce.update_cart_lines(cart.shopify_cart_id, mapping.items)
                return SyncOutcome(SyncKind.UPDATED, cart.shopify_cart_id, mapping.unmapped)
            except IntegrationError as exc:
                update_failed = True
                self._emit(ev.SYNC_FAILED, cart_id=cart.id, stage="update", error=exc)

        try:
            remote_id = await self.commerce.create_cart(
                mapping.items,
                buyer_email=cart.customer_email,
                buyer_phone=cart.customer_phone,
            )
        except IntegrationError as exc:
            self._emit(ev.SYNC_FAILED, cart_id=cart.id, stage="create", error=exc)
            return SyncOutcome(SyncKind.FAILED, dropped_items=mapping.unmapped, error=str(exc))

        cart.shopify_cart_id = remote_id
        await self.db.flush()
        kind = SyncKind.RECREATED if update_failed else SyncKind.CREATED
        return SyncOutcome(kind, remote_id, mapping.unmapped)

    async def list_remote_abandoned(self) -> list[RemoteCheckout]:
        try:
            return await self.commerce.get_abandoned_checkouts()
        except IntegrationError as exc:
            self._emit(ev.REMOTE_FETCH_FAILED, stage="abandoned_checkouts", error=exc)
            return []

    async def import_abandoned_carts(self) -> int:
        checkouts = await self.list_remote_abandoned()
        if not checkouts:
            return 0

        known = set(
            (
                await self.db.scalars(
                    select(Cart.shopify_checkout_id).where(
                        Cart.store_id == self.store_id,
                        Cart.shopify_checkout_id.in_([checkout.id for checkout in checkouts]),
                    )
                )
            ).all()
        )

        imported = 0
        for checkout in checkouts:
            if checkout.id in known:
                continue
            mapping = await self.map_lines_to_local(checkout.line_items)
            if not mapping.items:
                continue

            total = sum(item["price"] * item["quantity"] for item in mapping.items)
            cart = Cart(
                store_id=self.store_id,
                customer_name=checkout.customer.full_name if checkout.customer else None,
                customer_email=checkout.email,
                customer_phone=checkout.phone,
                items=mapping.items,
                total=round(total, 2),
                recovery_status=next_status(RecoveryStatus.NONE, RecoveryEvent.MARKED_ABANDONED),
                abandoned_at=checkout.created_at,
                created_at=checkout.created_at,
                updated_at=checkout.updated_at,
                shopify_checkout_id=checkout.id,
            )
            self.db.add(cart)
            known.add(checkout.id)
            imported += 1
            self._emit(ev.CART_IMPORTED, checkout_id=checkout.id, dropped=len(mapping.unmapped))

        await self.db.flush()
        return imported

    # --- recovery ---

    async def get_recovery_url(self, cart_id: Any) -> str | None:
        cart = await self.get_cart(cart_id)
        # Sin carrito remoto ni checkout importado no hay nada que recuperar en Shopify.
        if cart is None or not (cart.shopify_cart_id or cart.shopify_checkout_id):
            return None

        # La URL tiene que reflejar el contenido actual del carrito.
        outcome = await self.sync_cart(cart.id)
        if not outcome.ok:
            return None

        try:
            remote = await self.commerce.get_cart(outcome.remote_id)
            if remote is None:
                return None
            checkout_url = await self.commerce.get_checkout_url(remote.id)
        except IntegrationError as exc:
            self._emit(ev.REMOTE_FETCH_FAILED, cart_id=cart.id, stage="checkout_url", error=exc)
            return None

        if not checkout_url:
            return None
        return with_discount(checkout_url, cart.discount_code)

    async def mark_abandoned(self, cart_id: Any, *, at: datetime | None = None) -> Cart:
        cart = await self.get_cart(cart_id)
        if cart is None:
            raise ResourceNotFoundError(f"Cart {cart_id} not found")
        cart.recovery_status = next_status(cart.recovery_status, RecoveryEvent.MARKED_ABANDONED)
        cart.abandoned_at = at or _utcnow()
        await self.db.flush()
        self._emit(ev.CART_ABANDONED, cart_id=cart.id)
        return cart

    async def send_recovery_message(self, cart_id: Any) -> bool:
        cart = await self.get_cart(cart_id)
        if cart is None:
            self._emit(ev.MESSAGE_FAILED, cart_id=cart_id, reason="cart_not_found")
            return False
        if not cart.customer_phone or self.messaging is None or not self.context.messaging_configured:
            self._emit(ev.MESSAGE_FAILED, cart_id=cart.id, reason="missing_contact_or_credentials")
            return False
        if not can_apply(cart.recovery_status, RecoveryEvent.MESSAGE_SENT):
            self._emit(ev.MESSAGE_FAILED, cart_id=cart.id, reason=f"status_{cart.recovery_status.value}")
            return False

        recovery_url = await self.get_recovery_url(cart.id)
        if not recovery_url:
            self._emit(ev.MESSAGE_FAILED, cart_id=cart.id, reason="no_recovery_url")
            return False

        body = render_recovery_message(cart, self.context.name, recovery_url)
        try:
            await self.messaging.send_text(cart.customer_phone, body, preview_url=True)
        except IntegrationError as exc:
            self._emit(ev.MESSAGE_FAILED, cart_id=cart.id, reason="send_error", error=exc)
            return False

        cart.recovery_status = next_status(cart.recovery_status, RecoveryEvent.MESSAGE_SENT)
        cart.last_notified_at = _utcnow()
        await self.db.flush()
        self._emit(ev.MESSAGE_SENT, cart_id=cart.id, status=cart.recovery_status.value)
        return True

    async def process_recovery(self, cart_id: Any) -> bool:
        cart = await self.get_cart(cart_id)
        if cart is None:
            return False
        cart.recovery_status = next_status(cart.recovery_status, RecoveryEvent.CUSTOMER_RECOVERED)
        cart.recovered_at = _utcnow()
        await self.db.flush()
        self._emit(ev.CART_RECOVERED, cart_id=cart.id)
        return True

    async def get_recovery_stats(self) -> RecoveryStats:
        rows = await self.db.execute(
            select(Cart.recovery_status, func.count())
            .where(Cart.store_id == self.store_id)
            .group_by(Cart.recovery_status)
        )
        counts = {status: total for status, total in rows.all()}

        revenue = await self.db.scalar(
            select(func.coalesce(func.sum(Cart.total - func.coalesce(Cart.discount_amount, 0)), 0)).where(
                Cart.store_id == self.store_id,
                Cart.recovery_status == RecoveryStatus.RECOVERED,
            )
        )

        notified = counts.get(RecoveryStatus.NOTIFIED_FIRST, 0) + counts.get(RecoveryStatus.NOTIFIED_FINAL, 0)
        recovered = counts.get(RecoveryStatus.RECOVERED, 0)
        return RecoveryStats(
            abandoned=counts.get(RecoveryStatus.ABANDONED, 0),
            notified=notified,
            recovered=recovered,
            lost=counts.get(RecoveryStatus.LOST, 0),
            recovery_rate=recovered * 100 / notified if notified else 0.0,
            revenue=round(float(revenue or 0), 2),
        )


async def build_recovery_engine(
    db: AsyncSession,
    store_id: Any,
    *,
    commerce_client: CommerceClient | None = None,
    messaging_client: MessagingClient | None = None,
    events: ev.RecoveryEventSink | None = None,
) -> RecoveryEngine:
    store = await db.get(Store, _as_uuid(store_id, "store_id"))
    if store is None:
        raise ResourceNotFoundError(f"Store {store_id} not found")

    missing = [
        name
        for name, value in (
            ("shopify_store_url", store.shopify_store_url),
            ("shopify_access_token", store.shopify_access_token),
        )
        if not value
    ]
    if missing:
        raise StoreNotConfiguredError(store.id, missing)

    context = StoreContext(
        store_id=store.id,
        name=store.name,
        shopify_store_url=store.shopify_store_url,
        shopify_access_token=store.shopify_access_token,
        shopify_admin_access_token=store.shopify_admin_access_token,
        whatsapp_phone_number_id=store.whatsapp_phone_number_id,
        whatsapp_access_token=store.whatsapp_access_token,
    )

    owned: list[Any] = []
    if commerce_client is None:
        commerce_client = ShopifyClient(
            context.shopify_store_url,
            context.shopify_access_token,
            context.shopify_admin_access_token,
        )
        owned.append(commerce_client)
    if messaging_client is None and context.messaging_configured:
        messaging_client = WhatsAppClient(context.whatsapp_phone_number_id, context.whatsapp_access_token)
        owned.append(messaging_client)

    return RecoveryEngine(db, context, commerce_client, messaging_client, events, owned_clients=owned)
