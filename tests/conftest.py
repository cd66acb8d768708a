"""Test fixtures."""

import json
import os
from typing import AsyncGenerator, Optional

# Settings are read at import time; point them at SQLite and a fake carrier first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("FREIGHTCOM_API_BASE_URL", "https://carrier.test")
os.environ.setdefault("FREIGHTCOM_API_KEY", "test-api-key")
os.environ.setdefault("RATE_POLL_INTERVAL_MS", "0")
os.environ.setdefault("RATE_BACKGROUND_POLL", "false")
os.environ.setdefault("WAREHOUSE_PHONE", "9025550100")
os.environ.setdefault("WAREHOUSE_EMAIL", "warehouse@example.com")
os.environ.setdefault("WAREHOUSE_POSTAL_CODE", "B0N2T0")

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shipdesk.database import Base, get_db
from shipdesk.main import app
from shipdesk.models import Order, OrderItem, Product
from shipdesk.services.auth import create_access_token
from shipdesk.services.freightcom import FreightcomClient, get_freightcom_client
from shipdesk.services.rates import QuoteRegistry, get_quote_registry

# Use SQLite for tests (no external DB needed for unit tests)
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=NullPool)
test_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session() as session:
        yield session


app.dependency_overrides[get_db] = override_get_db


class FakeCarrier:
    """Scripted Freightcom API behind ``httpx.MockTransport``.

    ``on(method, path, *responses)`` queues responses for a route; each call
    pops the next one and the last one repeats. A response is a
    ``(status, json)`` tuple, an httpx exception class, or a callable taking
    the request.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.calls: list[tuple[str, str, Optional[dict], httpx.Request]] = []

    def on(self, method: str, path: str, *responses):
        self.routes[(method, path)] = list(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body, request))
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "not found"})
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, type) and issubclass(resp, httpx.HTTPError):
            raise resp("carrier unreachable", request=request)
        if callable(resp):
            return resp(request)
        status, payload = resp
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)

    def count(self, method: str, path: Optional[str] = None) -> int:
        return sum(1 for m, p, _, _ in self.calls if m == method and (path is None or p == path))

    def bodies(self, method: str, path: str) -> list:
        return [b for m, p, b, _ in self.calls if m == method and p == path]

    def client(self, **kwargs) -> FreightcomClient:
        kwargs.setdefault("base_url", "https://carrier.test")
        kwargs.setdefault("api_key", "test-api-key")
        return FreightcomClient(transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest_asyncio.fixture
async def carrier_client(carrier: FakeCarrier) -> AsyncGenerator[FreightcomClient, None]:
    fc = carrier.client()
    yield fc
    await fc.close()


@pytest_asyncio.fixture
async def registry() -> AsyncGenerator[QuoteRegistry, None]:
    reg = QuoteRegistry(ttl_seconds=900)
    yield reg
    await reg.shutdown()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session() as session:
        yield session


@pytest.fixture
def auth_headers() -> dict:
    token = create_access_token({"sub": "ops@example.com", "role": "operator"})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(
    auth_headers: dict,
    carrier_client: FreightcomClient,
    registry: QuoteRegistry,
) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_freightcom_client] = lambda: carrier_client
    app.dependency_overrides[get_quote_registry] = lambda: registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=auth_headers) as ac:
        yield ac
    app.dependency_overrides.pop(get_freightcom_client, None)
    app.dependency_overrides.pop(get_quote_registry, None)


@pytest_asyncio.fixture
async def anon_client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


DEFAULT_ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "company": "Suite 4",
    "address_1": "1 Main St",
    "address_2": "",
    "city": "Halifax",
    "province": "NS",
    "postal_code": "B3H1A1",
    "country_code": "ca",
    "phone": "+1 (902) 555-0199",
}


@pytest.fixture
def make_order(db: AsyncSession):
    """Insert an order (and products for dimensioned items) straight into the DB."""

    async def _make(
        items: Optional[list[dict]] = None,
        shipping_address: Optional[dict] = None,
        customer_phone: str = "",
        metadata: Optional[dict] = None,
    ) -> Order:
        order = Order(
            order_number=f"ORD-{os.urandom(4).hex().upper()}",
            customer_name="Ada Lovelace",
            customer_email="ada@example.com",
            customer_phone=customer_phone,
            shipping_address=dict(DEFAULT_ADDRESS if shipping_address is None else shipping_address),
            meta=dict(metadata or {}),
        )
        db.add(order)
        await db.flush()
        for line in items or []:
            product = None
            if any(k in line for k in ("weight_g", "length_cm", "width_cm", "height_cm")):
                product = Product(
                    sku=line.get("sku") or f"SKU-{os.urandom(3).hex()}",
                    title=line.get("title", "Item"),
                    weight_g=line.get("weight_g"),
                    length_cm=line.get("length_cm"),
                    width_cm=line.get("width_cm"),
                    height_cm=line.get("height_cm"),
                )
                db.add(product)
                await db.flush()
            db.add(OrderItem(
                order_id=order.id,
                product_id=product.id if product else None,
                sku=product.sku if product else "",
                title=line.get("title", "Item"),
                quantity=line.get("quantity", 1),
            ))
        await db.commit()
        return order

    return _make
