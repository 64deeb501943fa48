from datetime import datetime, timezone

import pytest
from conftest import cart_item, hours_ago

from app.domain.enums import RecoveryStatus
from app.models.cart import Cart
from app.services.exceptions import ResourceNotFoundError, StoreNotConfiguredError
from app.services.integrations.shopify import RemoteCheckout, RemoteCustomer, RemoteLine
from app.services.recovery_engine import SyncKind, build_recovery_engine
from app.services.recovery_events import ScanRecorder


@pytest.mark.asyncio
async def test_factory_rejects_unknown_store(async_db_session, fake_commerce):
    import uuid

    with pytest.raises(ResourceNotFoundError):
        await build_recovery_engine(async_db_session, uuid.uuid4(), commerce_client=fake_commerce)


@pytest.mark.asyncio
async def test_factory_requires_shopify_credentials(async_db_session, db_session, store, fake_commerce):
    store.shopify_access_token = None
    db_session.commit()

    with pytest.raises(StoreNotConfiguredError) as exc_info:
        await build_recovery_engine(async_db_session, store.id, commerce_client=fake_commerce)
    assert exc_info.value.missing == ["shopify_access_token"]


@pytest.mark.asyncio
async def test_engine_context_is_immutable(async_db_session, store, engine_factory):
    engine = await engine_factory(async_db_session, store.id)
    assert engine.context.name == "Test Store"
    assert engine.context.messaging_configured is True
    with pytest.raises(AttributeError):
        engine.context.shopify_access_token = "other"


@pytest.mark.asyncio
async def test_unmapped_item_is_dropped_not_rejected(async_db_session, store, products, engine_factory):
    recorder = ScanRecorder()
    engine = await engine_factory(async_db_session, store.id, events=recorder)
    items = [cart_item(products[0], 2), cart_item(products[1], 1), cart_item(products[2], 4)]

    mapping = await engine.map_items_to_remote(items)

    assert [(line.variant_id, line.quantity) for line in mapping.items] == [("101", 2), ("102", 1)]
    assert mapping.unmapped == [str(products[2].id)]
    assert mapping.partial is True
    assert recorder.count("item_unmapped") == 1


@pytest.mark.asyncio
async def test_remote_lines_map_back_to_local_items(async_db_session, store, products, engine_factory):
    engine = await engine_factory(async_db_session, store.id)

    mapping = await engine.map_lines_to_local(
        [RemoteLine("101", 3), RemoteLine("999", 1), RemoteLine("102", 1)]
    )

    assert [(item["id"], item["quantity"]) for item in mapping.items] == [
        (str(products[0].id), 3),
        (str(products[1].id), 1),
    ]
    assert mapping.items[0]["price"] == 20.0
    assert mapping.items[0]["image"] == "https://cdn.test/tee.jpg"
    assert mapping.unmapped == ["999"]


@pytest.mark.asyncio
async def test_sync_creates_remote_cart_and_persists_id(async_db_session, store, make_cart, engine_factory, fake_commerce):
    cart = make_cart()
    engine = await engine_factory(async_db_session, store.id)

    outcome = await engine.sync_cart(cart.id)

    assert outcome.kind is SyncKind.CREATED
    assert outcome.ok
    assert outcome.remote_id in fake_commerce.carts
    refreshed = await async_db_session.get(Cart, cart.id)
    assert refreshed.shopify_cart_id == outcome.remote_id


@pytest.mark.asyncio
async def test_sync_updates_existing_remote_cart(async_db_session, store, make_cart, engine_factory, fake_commerce):
    fake_commerce.carts["gid://shopify/Cart/existing"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/existing")
    engine = await engine_factory(async_db_session, store.id)

    outcome = await engine.sync_cart(cart.id)

    assert outcome.kind is SyncKind.UPDATED
    assert outcome.remote_id == "gid://shopify/Cart/existing"
    assert [line.variant_id for line in fake_commerce.carts["gid://shopify/Cart/existing"]] == ["101", "102"]


@pytest.mark.asyncio
async def test_sync_recreates_when_update_fails(async_db_session, store, make_cart, engine_factory, fake_commerce):
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/expired")
    recorder = ScanRecorder()
    engine = await engine_factory(async_db_session, store.id, events=recorder)

    outcome = await engine.sync_cart(cart.id)

    assert outcome.kind is SyncKind.RECREATED
    assert outcome.remote_id != "gid://shopify/Cart/expired"
    assert recorder.count("sync_failed") == 1
    refreshed = await async_db_session.get(Cart, cart.id)
    assert refreshed.shopify_cart_id == outcome.remote_id


@pytest.mark.asyncio
async def test_sync_fails_when_both_paths_fail(async_db_session, store, make_cart, engine_factory, fake_commerce):
    fake_commerce.fail_create = True
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/expired")
    engine = await engine_factory(async_db_session, store.id)

    outcome = await engine.sync_cart(cart.id)

    assert outcome.kind is SyncKind.FAILED
    assert not outcome.ok
    assert outcome.remote_id is None


@pytest.mark.asyncio
async def test_sync_of_missing_cart_fails(async_db_session, store, engine_factory):
    import uuid

    engine = await engine_factory(async_db_session, store.id)
    outcome = await engine.sync_cart(uuid.uuid4())
    assert outcome.kind is SyncKind.FAILED


@pytest.mark.asyncio
async def test_sync_round_trip_preserves_mapped_items(async_db_session, store, products, make_cart, engine_factory, fake_commerce):
    items = [cart_item(products[0], 2), cart_item(products[1], 1), cart_item(products[2], 7)]
    cart = make_cart(items=items)
    engine = await engine_factory(async_db_session, store.id)

    outcome = await engine.sync_cart(cart.id)
    remote = await fake_commerce.get_cart(outcome.remote_id)
    back = await engine.map_lines_to_local(remote.lines)

    assert {(item["id"], item["quantity"]) for item in back.items} == {
        (str(products[0].id), 2),
        (str(products[1].id), 1),
    }
    assert outcome.dropped_items == [str(products[2].id)]


def _checkout(checkout_id: str, lines: list[RemoteLine]) -> RemoteCheckout:
    return RemoteCheckout(
        id=checkout_id,
        created_at=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        updated_at=datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc),
        email="bruno@example.com",
        phone="+5491122223333",
        customer=RemoteCustomer("Bruno", "Diaz"),
        line_items=lines,
    )


@pytest.mark.asyncio
async def test_import_is_idempotent_per_store(async_db_session, store, products, engine_factory, fake_commerce):
    fake_commerce.checkouts = [
        _checkout("9001", [RemoteLine("101", 2), RemoteLine("102", 1)]),
        _checkout("9002", [RemoteLine("999", 1)]),
    ]
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.import_abandoned_carts() == 1
    await async_db_session.commit()
    assert await engine.import_abandoned_carts() == 0
    await async_db_session.commit()

    from sqlalchemy import select

    carts = (await async_db_session.scalars(select(Cart).where(Cart.store_id == store.id))).all()
    assert len(carts) == 1
    imported = carts[0]
    assert imported.shopify_checkout_id == "9001"
    assert imported.shopify_cart_id is None
    assert imported.recovery_status is RecoveryStatus.ABANDONED
    assert imported.customer_name == "Bruno Diaz"
    assert float(imported.total) == 90.0
    assert imported.abandoned_at.replace(tzinfo=None) == datetime(2024, 5, 1, 10, 0)
    assert imported.updated_at.replace(tzinfo=None) == datetime(2024, 5, 1, 11, 30)


@pytest.mark.asyncio
async def test_imported_cart_stays_deduplicated_after_sync(
    async_db_session, store, products, engine_factory, fake_commerce, fake_messaging
):
    fake_commerce.checkouts = [_checkout("9001", [RemoteLine("101", 2)])]
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.import_abandoned_carts() == 1
    await async_db_session.commit()

    from sqlalchemy import select

    imported = await async_db_session.scalar(select(Cart).where(Cart.store_id == store.id))
    assert await engine.send_recovery_message(imported.id) is True
    await async_db_session.commit()

    assert await engine.import_abandoned_carts() == 0
    await async_db_session.commit()

    carts = (await async_db_session.scalars(select(Cart).where(Cart.store_id == store.id))).all()
    assert len(carts) == 1
    assert carts[0].shopify_checkout_id == "9001"
    assert carts[0].shopify_cart_id.startswith("gid://shopify/Cart/")
    assert carts[0].recovery_status is RecoveryStatus.NOTIFIED_FIRST
    assert len(fake_messaging.sent) == 1


@pytest.mark.asyncio
async def test_import_returns_zero_when_remote_fails(async_db_session, store, engine_factory, fake_commerce):
    fake_commerce.fail_checkouts = True
    recorder = ScanRecorder()
    engine = await engine_factory(async_db_session, store.id, events=recorder)

    assert await engine.import_abandoned_carts() == 0
    assert await engine.list_remote_abandoned() == []
    assert recorder.count("remote_fetch_failed") == 2


@pytest.mark.asyncio
async def test_recovery_url_requires_remote_cart(async_db_session, store, make_cart, engine_factory):
    cart = make_cart()
    engine = await engine_factory(async_db_session, store.id)
    assert await engine.get_recovery_url(cart.id) is None


@pytest.mark.asyncio
async def test_recovery_url_appends_discount_code(async_db_session, store, make_cart, engine_factory, fake_commerce):
    fake_commerce.carts["gid://shopify/Cart/1"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/1", discount_code="VUELVE10")
    engine = await engine_factory(async_db_session, store.id)

    url = await engine.get_recovery_url(cart.id)

    assert url == "https://test-shop.myshopify.com/checkouts/c1?key=abc&discount=VUELVE10"
    # el sync corre antes de pedir la URL
    assert ("update", "gid://shopify/Cart/1") in fake_commerce.calls


@pytest.mark.asyncio
async def test_send_moves_abandoned_to_first_then_final(async_db_session, store, make_cart, engine_factory, fake_commerce, fake_messaging):
    fake_commerce.carts["gid://shopify/Cart/1"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/1", recovery_status=RecoveryStatus.ABANDONED)
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.send_recovery_message(cart.id) is True
    current = await async_db_session.get(Cart, cart.id)
    assert current.recovery_status is RecoveryStatus.NOTIFIED_FIRST
    assert current.last_notified_at is not None

    assert await engine.send_recovery_message(cart.id) is True
    assert current.recovery_status is RecoveryStatus.NOTIFIED_FINAL

    assert await engine.send_recovery_message(cart.id) is True
    assert current.recovery_status is RecoveryStatus.NOTIFIED_FINAL

    to, body, preview = fake_messaging.sent[0]
    assert to == "+5491100000000"
    assert preview is True
    assert "Checkout now: https://test-shop.myshopify.com/checkouts/c1?key=abc" in body


@pytest.mark.asyncio
async def test_send_fails_fast_without_phone(async_db_session, store, make_cart, engine_factory, fake_messaging):
    cart = make_cart(customer_phone=None, shopify_cart_id="gid://shopify/Cart/1")
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.send_recovery_message(cart.id) is False
    assert fake_messaging.sent == []


@pytest.mark.asyncio
async def test_send_fails_without_messaging_credentials(async_db_session, db_session, store, make_cart, fake_commerce):
    store.whatsapp_access_token = None
    db_session.commit()
    fake_commerce.carts["gid://shopify/Cart/1"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/1", recovery_status=RecoveryStatus.ABANDONED)

    engine = await build_recovery_engine(async_db_session, store.id, commerce_client=fake_commerce)

    assert engine.messaging is None
    assert await engine.send_recovery_message(cart.id) is False


@pytest.mark.asyncio
async def test_send_failure_keeps_status(async_db_session, store, make_cart, engine_factory, fake_commerce, fake_messaging):
    fake_messaging.fail = True
    fake_commerce.carts["gid://shopify/Cart/1"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/1", recovery_status=RecoveryStatus.ABANDONED)
    recorder = ScanRecorder()
    engine = await engine_factory(async_db_session, store.id, events=recorder)

    assert await engine.send_recovery_message(cart.id) is False
    current = await async_db_session.get(Cart, cart.id)
    assert current.recovery_status is RecoveryStatus.ABANDONED
    assert recorder.count("message_failed") == 1


@pytest.mark.asyncio
async def test_lost_cart_is_never_messaged(async_db_session, store, make_cart, engine_factory, fake_commerce, fake_messaging):
    fake_commerce.carts["gid://shopify/Cart/1"] = []
    cart = make_cart(shopify_cart_id="gid://shopify/Cart/1", recovery_status=RecoveryStatus.LOST)
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.send_recovery_message(cart.id) is False
    assert fake_messaging.sent == []


@pytest.mark.asyncio
async def test_process_recovery_sets_recovered(async_db_session, store, make_cart, engine_factory):
    cart = make_cart(recovery_status=RecoveryStatus.NOTIFIED_FINAL, last_notified_at=hours_ago(2))
    engine = await engine_factory(async_db_session, store.id)

    assert await engine.process_recovery(cart.id) is True
    current = await async_db_session.get(Cart, cart.id)
    assert current.recovery_status is RecoveryStatus.RECOVERED
    assert current.recovered_at is not None


@pytest.mark.asyncio
async def test_stats_guard_zero_notified(async_db_session, store, make_cart, engine_factory):
    make_cart(recovery_status=RecoveryStatus.ABANDONED)
    engine = await engine_factory(async_db_session, store.id)

    stats = await engine.get_recovery_stats()

    assert stats.abandoned == 1
    assert stats.notified == 0
    assert stats.recovery_rate == 0.0
    assert stats.revenue == 0.0


@pytest.mark.asyncio
async def test_stats_rate_and_revenue(async_db_session, store, make_cart, engine_factory):
    for _ in range(3):
        make_cart(recovery_status=RecoveryStatus.NOTIFIED_FIRST)
    for _ in range(2):
        make_cart(recovery_status=RecoveryStatus.NOTIFIED_FINAL)
    make_cart(recovery_status=RecoveryStatus.RECOVERED, total=100, discount_amount=15)
    make_cart(recovery_status=RecoveryStatus.RECOVERED, total=40)
    make_cart(recovery_status=RecoveryStatus.LOST)
    engine = await engine_factory(async_db_session, store.id)

    stats = await engine.get_recovery_stats()

    assert stats.notified == 5
    assert stats.recovered == 2
    assert stats.lost == 1
    assert stats.recovery_rate == 40.0
    assert stats.revenue == 125.0
    assert stats.model_dump(by_alias=True)["recoveryRate"] == 40.0


@pytest.mark.asyncio
async def test_stats_rate_is_not_rounded(async_db_session, store, make_cart, engine_factory):
    for _ in range(3):
        make_cart(recovery_status=RecoveryStatus.NOTIFIED_FIRST)
    make_cart(recovery_status=RecoveryStatus.RECOVERED)
    engine = await engine_factory(async_db_session, store.id)

    stats = await engine.get_recovery_stats()

    assert stats.recovery_rate == pytest.approx(100 / 3)
    assert stats.recovery_rate != 33.33


@pytest.mark.asyncio
async def test_malformed_remote_checkout_degrades_to_empty_import(async_db_session, store, fake_messaging):
    import httpx

    from app.services.integrations.shopify import ShopifyClient

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"checkouts": [{"id": 1, "created_at": "not-a-date"}]})

    shopify = ShopifyClient(
        "test-shop.myshopify.com",
        "storefront-token",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    recorder = ScanRecorder()
    engine = await build_recovery_engine(
        async_db_session, store.id, commerce_client=shopify, messaging_client=fake_messaging, events=recorder
    )

    assert await engine.import_abandoned_carts() == 0
    assert recorder.count("remote_fetch_failed") == 1
