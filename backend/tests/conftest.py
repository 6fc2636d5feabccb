import asyncio
import json
import os
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from storefront.core import metrics  # noqa: E402
from storefront.core.config import settings  # noqa: E402
from storefront.core.signatures import compute_signature  # noqa: E402
from storefront.db.base import Base  # noqa: E402
from storefront.db.session import get_session  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models.catalog import Category, Product, ProductVariant  # noqa: E402
from storefront.models.coupon import (  # noqa: E402
    Coupon,
    CouponScope,
    CouponScopeEntityType,
    CouponScopeMode,
    DiscountType,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory() -> Generator[async_sessionmaker, None, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


def auth_headers(user_id: uuid.UUID, role: str = "customer") -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Role": role}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_product():
    async def _make(
        session,
        *,
        price: str = "100.00",
        stock: int = 10,
        shipping_charge: str = "0.00",
        free_shipping: bool = False,
        seller_id: uuid.UUID | None = None,
        category: Category | None = None,
        variants: list[tuple[str, int, str | None]] | None = None,
        is_active: bool = True,
    ) -> Product:
        suffix = uuid.uuid4().hex[:8]
        category = category or Category(slug=f"cat-{suffix}", name=f"Category {suffix}")
        product = Product(
            category=category,
            seller_id=seller_id,
            sku=f"SKU-{suffix}".upper(),
            slug=f"product-{suffix}",
            name=f"Product {suffix}",
            price=Decimal(price),
            stock_quantity=stock,
            total_sold=0,
            shipping_charge=Decimal(shipping_charge),
            free_shipping=free_shipping,
            is_active=is_active,
            variants=[
                ProductVariant(sku=sku, name=sku, stock_quantity=qty, price=Decimal(vprice) if vprice else None)
                for sku, qty, vprice in (variants or [])
            ],
        )
        session.add(product)
        await session.commit()
        await session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_coupon():
    async def _make(
        session,
        *,
        code: str = "SAVE20",
        discount_type: DiscountType = DiscountType.percentage,
        discount_value: str = "20",
        max_discount_amount: str | None = "200",
        min_order_value: str = "0",
        max_usage_limit: int | None = None,
        max_usage_per_user: int | None = 1,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        is_active: bool = True,
        free_shipping: bool = False,
        scopes: list[tuple[CouponScopeEntityType, uuid.UUID, CouponScopeMode]] | None = None,
    ) -> Coupon:
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            max_discount_amount=Decimal(max_discount_amount) if max_discount_amount is not None else None,
            min_order_value=Decimal(min_order_value),
            max_usage_limit=max_usage_limit,
            max_usage_per_user=max_usage_per_user,
            usage_count=0,
            valid_from=valid_from or NOW - timedelta(days=1),
            valid_until=valid_until or NOW + timedelta(days=30),
            is_active=is_active,
            free_shipping=free_shipping,
            scopes=[
                CouponScope(entity_type=entity_type, entity_id=entity_id, mode=mode)
                for entity_type, entity_id, mode in (scopes or [])
            ],
        )
        session.add(coupon)
        await session.commit()
        await session.refresh(coupon)
        return coupon

    return _make


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
    "country": "IN",
}


class RecordingInventory:
    """Inventory double that records calls and can be told to fail."""

    def __init__(self, *, fail_increment_sold: bool = False) -> None:
        self.decreased: list[tuple[uuid.UUID, int, str | None]] = []
        self.increased: list[tuple[uuid.UUID, int, str | None]] = []
        self.sold: list[tuple[uuid.UUID, int]] = []
        self.fail_increment_sold = fail_increment_sold

    async def decrease_stock(self, product_id, quantity, variant_sku=None) -> None:
        self.decreased.append((product_id, quantity, variant_sku))

    async def increase_stock(self, product_id, quantity, variant_sku=None) -> None:
        self.increased.append((product_id, quantity, variant_sku))

    async def increment_sold(self, product_id, quantity) -> None:
        if self.fail_increment_sold:
            raise RuntimeError("catalog unavailable")
        self.sold.append((product_id, quantity))


@pytest.fixture
def fake_inventory() -> type[RecordingInventory]:
    return RecordingInventory


@pytest.fixture
def address() -> dict:
    return dict(ADDRESS)


@pytest.fixture
def place_order(make_product):
    from storefront.models.order import PaymentMethod
    from storefront.schemas.order import OrderCreate, OrderItemCreate
    from storefront.services import order as order_service

    async def _place(
        session,
        *,
        lines: list[tuple[str, int]] | None = None,
        user_id: uuid.UUID | None = None,
        seller_id: uuid.UUID | None = None,
        shipping_charge: str = "0.00",
        payment_method: PaymentMethod = PaymentMethod.gateway,
        when: datetime = NOW,
    ):
        items = []
        for price, quantity in lines or [("100.00", 1)]:
            product = await make_product(
                session, price=price, stock=max(10, quantity), shipping_charge=shipping_charge, seller_id=seller_id
            )
            items.append(OrderItemCreate(product_id=product.id, quantity=quantity))
        payload = OrderCreate(items=items, payment_method=payment_method, shipping_address=ADDRESS)
        return await order_service.create_order(session, user_id=user_id or uuid.uuid4(), payload=payload, now=when)

    return _place


PAYMENT_SECRET = "whsec_payments_test"
SHIPMENT_SECRET = "whsec_shipments_test"


@pytest.fixture
def callback_secrets(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    monkeypatch.setattr(settings, "payment_webhook_secret", PAYMENT_SECRET)
    monkeypatch.setattr(settings, "shipment_webhook_secret", SHIPMENT_SECRET)
    return {"X-Payment-Signature": PAYMENT_SECRET, "X-Shipment-Signature": SHIPMENT_SECRET}


@pytest.fixture
def signed_post(client, callback_secrets):
    """POST a JSON body signed the way the payment and courier collaborators sign it."""

    def _post(url: str, payload: dict, *, header: str, secret: str | None = None):
        body = json.dumps(payload).encode("utf-8")
        signature = compute_signature(secret or callback_secrets[header], body)
        return client.post(url, content=body, headers={"Content-Type": "application/json", header: signature})

    return _post
