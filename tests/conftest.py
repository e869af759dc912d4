"""
conftest.py — Shared Test Fixtures for ledgersync

Provides an in-memory SQLite database, a fake WooCommerce client, a seeded
tax cache, a sync engine wired to the test session, a FastAPI TestClient
with dependency overrides, and factories for orders and raw store payloads.

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- No test talks to a real store: the engine and routers get FakeStoreClient
- Each test function gets fresh tables (create_all / drop_all)

Called by: all test files via pytest autodiscovery
Depends on: ledgersync.models (Base), ledgersync.database (get_db), ledgersync.dependencies
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing ledgersync modules
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledgersync.models import Base, Order
from ledgersync.scheduler import scheduler
from ledgersync.services.tax_rates import TaxRateCache
from ledgersync.sync_engine import OrderSyncEngine

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"  # in-memory, fresh per session

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# ── Fake store ───────────────────────────────────────────────────────


class FakeStoreClient:
    """Stands in for WooCommerceClient. Serves self.orders page by page."""

    def __init__(self, orders=None, tax_classes=None, tax_rates=None):
        self.orders = list(orders or [])
        self.tax_classes = list(tax_classes or [])
        self.tax_rates = list(tax_rates or [])
        self.product_tax_classes: dict[int, str] = {}
        self.fetch_calls: list[dict] = []
        self.fail_with: Exception | None = None

    async def fetch_orders(self, **params):
        self.fetch_calls.append(params)
        if self.fail_with:
            raise self.fail_with
        per_page = params.get("per_page", 100)
        page = params.get("page", 1)
        return self.orders[(page - 1) * per_page:page * per_page]

    async def fetch_tax_classes(self):
        if self.fail_with:
            raise self.fail_with
        return self.tax_classes

    async def fetch_tax_rates(self):
        if self.fail_with:
            raise self.fail_with
        return self.tax_rates

    async def fetch_product_tax_class(self, product_id):
        return self.product_tax_classes.get(product_id)


def wc_line(line_id=1, product_id=10, total="83.33", total_tax="16.67", quantity=1, **extra):
    """Raw store line item payload."""
    item = {
        "id": line_id,
        "product_id": product_id,
        "name": f"Product {product_id}",
        "sku": f"SKU-{product_id}",
        "quantity": quantity,
        "price": total,
        "subtotal": total,
        "subtotal_tax": total_tax,
        "total": total,
        "total_tax": total_tax,
        "tax_class": "",
        "taxes": [],
    }
    item.update(extra)
    return item


def wc_order(order_id=101, date_created="2026-03-18T10:00:00", line_items=None, **extra):
    """Raw store order payload."""
    order = {
        "id": order_id,
        "number": str(order_id),
        "status": "processing",
        "currency": "MAD",
        "date_created": date_created,
        "date_modified": date_created,
        "total": "100.00",
        "total_tax": "16.67",
        "shipping_total": "0.00",
        "shipping_tax": "0.00",
        "customer_id": 7,
        "billing": {
            "first_name": "Amina",
            "last_name": "Benali",
            "email": "amina@example.com",
            "company": "",
        },
        "shipping": {},
        "line_items": line_items if line_items is not None else [wc_line()],
        "tax_lines": [{"id": 1, "rate_code": "MA-TVA-1", "rate_id": 1, "label": "TVA", "rate_percent": 20}],
    }
    order.update(extra)
    return order


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clear_scheduler_jobs():
    """The scheduler is module-global; keep jobs from leaking between tests."""
    for job in scheduler.get_jobs():
        job.remove()
    yield
    for job in scheduler.get_jobs():
        job.remove()


@pytest.fixture()
def tax_cache() -> TaxRateCache:
    """Built-in defaults only, standard rate 20, Morocco."""
    return TaxRateCache(default_rate=20, country="MA")


@pytest.fixture()
def store_client() -> FakeStoreClient:
    return FakeStoreClient()


@pytest.fixture()
def sync_engine(db_session: Session, store_client, tax_cache) -> OrderSyncEngine:
    return OrderSyncEngine(store_client, tax_cache, session_factory=lambda: db_session)


@pytest.fixture()
def no_sleep():
    """Make every asyncio.sleep (batch pauses, retry backoff) instant."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture()
def make_order(db_session: Session, tax_cache):
    """Factory: persist a mirrored order from a raw payload's worth of kwargs."""
    from ledgersync.services.order_service import normalize_order

    def _make(order_id=101, date_created="2026-03-18T10:00:00", line_items=None, **extra) -> Order:
        values = normalize_order(wc_order(order_id, date_created, line_items, **extra), tax_cache)
        order = Order(**values)
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture()
def client(db_session: Session, sync_engine: OrderSyncEngine, tax_cache, store_client) -> TestClient:
    """FastAPI TestClient on the test DB, the fake store and the test engine."""
    from ledgersync.database import get_db
    from ledgersync.dependencies import get_store_client, get_sync_engine, get_tax_cache
    from ledgersync.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine
    app.dependency_overrides[get_tax_cache] = lambda: tax_cache
    app.dependency_overrides[get_store_client] = lambda: store_client

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def march_18() -> datetime:
    return datetime(2026, 3, 18, 10, 0, 0)
