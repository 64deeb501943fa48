from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from app.core.config import settings
from app.services.integrations import CommerceClientError

VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"


def to_variant_gid(variant_id: str) -> str:
    variant_id = str(variant_id)
    if variant_id.startswith("gid://"):
        return variant_id
    return f"{VARIANT_GID_PREFIX}{variant_id}"


def from_variant_gid(value: str | int) -> str:
    """Canonical (numeric) variant id, as used by the Admin API and the mappings table."""
    value = str(value)
    if value.startswith(VARIANT_GID_PREFIX):
        return value[len(VARIANT_GID_PREFIX):]
    return value


def normalize_store_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class RemoteLine:
    variant_id: str
    quantity: int
    line_id: str | None = None


@dataclass
class RemoteCart:
    id: str
    lines: list[RemoteLine] = field(default_factory=list)
    buyer_email: str | None = None
    buyer_phone: str | None = None
    total_amount: float | None = None
    currency: str | None = None
    discount_codes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteCustomer:
    first_name: str | None = None
    last_name: str | None = None

    @property
    def full_name(self) -> str | None:
        if not self.first_name:
            return None
        return f"{self.first_name} {self.last_name or ''}".strip()


@dataclass
class RemoteCheckout:
    id: str
    created_at: datetime
    updated_at: datetime
    email: str | None = None
    phone: str | None = None
    customer: RemoteCustomer | None = None
    line_items: list[RemoteLine] = field(default_factory=list)


CART_CREATE = """
mutation cartCreate($input: CartInput!) {
  cartCreate(input: $input) {
    cart { id checkoutUrl }
    userErrors { field message }
  }
}
"""

CART_LINES_UPDATE = """
mutation cartLinesUpdate($cartId: ID!, $lines: [CartLineUpdateInput!]!) {
  cartLinesUpdate(cartId: $cartId, lines: $lines) {
    cart { id }
    userErrors { field message }
  }
}
"""

CART_LINES_ADD = """
mutation cartLinesAdd($cartId: ID!, $lines: [CartLineInput!]!) {
  cartLinesAdd(cartId: $cartId, lines: $lines) {
    cart { id }
    userErrors { field message }
  }
}
"""

GET_CART = """
query getCart($cartId: ID!) {
  cart(id: $cartId) {
    id
    lines(first: 100) {
      edges { node { id quantity merchandise { ... on ProductVariant { id } } } }
    }
    buyerIdentity { email phone }
    cost { totalAmount { amount currencyCode } }
    discountCodes { code }
  }
}
"""

GET_CHECKOUT_URL = """
query getCheckoutUrl($cartId: ID!) {
  cart(id: $cartId) { checkoutUrl }
}
"""


class ShopifyClient:
    """Thin async wrapper over the Storefront GraphQL API and the Admin REST checkouts endpoint.

    Every failure (transport, HTTP status, GraphQL ``errors`` or ``userErrors``)
    surfaces as :class:`CommerceClientError`; callers decide how to degrade.
    """

    def __init__(
        self,
        store_url: str,
        storefront_token: str,
        admin_token: str | None = None,
        *,
        api_version: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store_url = normalize_store_url(store_url)
        self.storefront_token = storefront_token
        self.admin_token = admin_token or storefront_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self._http = http_client or httpx.AsyncClient(timeout=settings.INTEGRATION_HTTP_TIMEOUT_SECONDS)
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ShopifyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def graphql_url(self) -> str:
        return f"{self.store_url}/api/{self.api_version}/graphql.json"

    @property
    def checkouts_url(self) -> str:
        return f"{self.store_url}/admin/api/{self.api_version}/checkouts.json"

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CommerceClientError(f"Shopify error {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise CommerceClientError(f"Shopify connection error: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise CommerceClientError("Shopify returned a non-JSON response") from exc

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            self.graphql_url,
            json={"query": query, "variables": variables},
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Storefront-Access-Token": self.storefront_token,
            },
        )
        if payload.get("errors"):
            raise CommerceClientError(f"Shopify GraphQL errors: {payload['errors']}")
        return payload.get("data") or {}

    @staticmethod
    def _mutation_result(data: dict[str, Any], name: str) -> dict[str, Any]:
        result = data.get(name) or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise CommerceClientError(f"Shopify {name} rejected: {user_errors}")
        return result

    async def create_cart(
        self,
        lines: Iterable[RemoteLine],
        *,
        buyer_email: str | None = None,
        buyer_phone: str | None = None,
    ) -> str:
        cart_input: dict[str, Any] = {
            "lines": [
                {"merchandiseId": to_variant_gid(line.variant_id), "quantity": line.quantity}
                for line in lines
            ],
        }
        if buyer_email or buyer_phone:
            buyer: dict[str, str] = {}
            if buyer_email:
                buyer["email"] = buyer_email
            if buyer_phone:
                buyer["phone"] = buyer_phone
            cart_input["buyerIdentity"] = buyer

        data = await self._graphql(CART_CREATE, {"input": cart_input})
        result = self._mutation_result(data, "cartCreate")
        cart = result.get("cart") or {}
        if not cart.get("id"):
            raise CommerceClientError("Shopify cartCreate returned no cart")
        return cart["id"]

    async def update_cart_lines(self, cart_id: str, lines: Iterable[RemoteLine]) -> None:
        """Make the remote cart's lines match ``lines``.

        Existing lines are updated in place (quantity 0 removes a line) and
        variants the remote cart does not hold yet are added.
        """
        remote = await self.get_cart(cart_id)
        if remote is None:
            raise CommerceClientError(f"Shopify cart not found: {cart_id}")

        existing = {line.variant_id: line.line_id for line in remote.lines if line.line_id}
        wanted = {line.variant_id: line.quantity for line in lines}

        updates = [
            {"id": line_id, "merchandiseId": to_variant_gid(variant_id), "quantity": wanted.get(variant_id, 0)}
            for variant_id, line_id in existing.items()
        ]
        additions = [
            {"merchandiseId": to_variant_gid(variant_id), "quantity": quantity}
            for variant_id, quantity in wanted.items()
            if variant_id not in existing
        ]

        if updates:
            data = await self._graphql(CART_LINES_UPDATE, {"cartId": cart_id, "lines": updates})
            self._mutation_result(data, "cartLinesUpdate")
        if additions:
            data = await self._graphql(CART_LINES_ADD, {"cartId": cart_id, "lines": additions})
            self._mutation_result(data, "cartLinesAdd")

    async def get_cart(self, cart_id: str) -> RemoteCart | None:
        data = await self._graphql(GET_CART, {"cartId": cart_id})
        cart = data.get("cart")
        if not cart:
            return None

        lines = []
        for edge in (cart.get("lines") or {}).get("edges", []):
            node = edge.get("node") or {}
            merchandise = node.get("merchandise") or {}
            if not merchandise.get("id"):
                continue
            lines.append(
                RemoteLine(
                    variant_id=from_variant_gid(merchandise["id"]),
                    quantity=int(node.get("quantity") or 0),
                    line_id=node.get("id"),
                )
            )

        buyer = cart.get("buyerIdentity") or {}
        total = ((cart.get("cost") or {}).get("totalAmount")) or {}
        return RemoteCart(
            id=cart["id"],
            lines=lines,
            buyer_email=buyer.get("email"),
            buyer_phone=buyer.get("phone"),
            total_amount=float(total["amount"]) if total.get("amount") is not None else None,
            currency=total.get("currencyCode"),
            discount_codes=[dc["code"] for dc in cart.get("discountCodes") or [] if dc.get("code")],
        )

    async def get_checkout_url(self, cart_id: str) -> str | None:
        data = await self._graphql(GET_CHECKOUT_URL, {"cartId": cart_id})
        return (data.get("cart") or {}).get("checkoutUrl") or None

    async def get_abandoned_checkouts(self) -> list[RemoteCheckout]:
        # Un solo batch, sin cursor de paginacion.
        payload = await self._request(
            "GET",
            self.checkouts_url,
            params={"status": "open", "created_at_min": settings.SHOPIFY_CHECKOUTS_CREATED_AT_MIN},
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": self.admin_token,
            },
        )
        return [self._parse_checkout(raw) for raw in payload.get("checkouts") or []]

    @staticmethod
    def _parse_checkout(raw: dict[str, Any]) -> RemoteCheckout:
        try:
            return ShopifyClient._build_checkout(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise CommerceClientError(f"Shopify returned a malformed checkout: {raw.get('id')}") from exc

    @staticmethod
    def _build_checkout(raw: dict[str, Any]) -> RemoteCheckout:
        created_at = _parse_timestamp(raw.get("created_at")) or datetime.now(timezone.utc)
        customer = raw.get("customer") or None
        return RemoteCheckout(
            id=str(raw["id"]),
            created_at=created_at,
            updated_at=_parse_timestamp(raw.get("updated_at")) or created_at,
            email=raw.get("email"),
            phone=raw.get("phone"),
            customer=RemoteCustomer(customer.get("first_name"), customer.get("last_name")) if customer else None,
            line_items=[
                RemoteLine(variant_id=from_variant_gid(item["variant_id"]), quantity=int(item.get("quantity") or 0))
                for item in raw.get("line_items") or []
                if item.get("variant_id") is not None
            ],
        )
