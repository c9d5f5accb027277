"""
Pytest configuration and fixtures.
"""
from decimal import Decimal
from typing import Any, AsyncGenerator, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from api.dependencies import get_audit_recorder
from api.main import app
from config import Settings, get_settings
from core.audit import AuditRecorder
from database.connection import create_session_factory, get_db, init_db
from database.models import Customer, Product, utcnow


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        app_name="storefront-checkout-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        payment_approval_probability=1.0,
        payment_max_retry_attempts=3,
        payment_retry_delay_millis=0,
        tokenization_rejection_probability=0.0,
        email_notification_enabled=False,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a throwaway SQLite database with all tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit(session_factory: async_sessionmaker[AsyncSession]) -> AuditRecorder:
    """Audit recorder writing to the test database."""
    return AuditRecorder(session_factory)


@pytest_asyncio.fixture
async def customer(test_db: AsyncSession) -> Customer:
    """A registered customer."""
    now = utcnow()
    customer = Customer(
        first_name="John",
        last_name="Doe",
        email="john.doe@example.com",
        phone_number="+573001234567",
        address="Calle 123 #45-67",
        city="Bogota",
        state="Cundinamarca",
        zip_code="110111",
        country="Colombia",
        active=True,
        created_at=now,
        updated_at=now,
    )
    test_db.add(customer)
    await test_db.commit()
    return customer


@pytest_asyncio.fixture
async def products(test_db: AsyncSession) -> List[Product]:
    """Two active products and one inactive product."""
    now = utcnow()
    items = [
        Product(
            name="Laptop Pro 15",
            price=Decimal("1299.99"),
            stock=10,
            category="Electronics",
            sku="LAP-PRO-15",
            active=True,
            created_at=now,
            updated_at=now,
        ),
        Product(
            name="Wireless Mouse",
            price=Decimal("25.50"),
            stock=5,
            category="Accessories",
            sku="MOU-WL-01",
            active=True,
            created_at=now,
            updated_at=now,
        ),
        Product(
            name="Discontinued Dock",
            price=Decimal("89.00"),
            stock=3,
            active=False,
            created_at=now,
            updated_at=now,
        ),
    ]
    test_db.add_all(items)
    await test_db.commit()
    return items


@pytest.fixture
def checkout_payload() -> dict[str, Any]:
    """Shipping and card details for a checkout request, minus customer id."""
    return {
        "tokenized_card": "tok_9f86d081884c7d659a2feaa0c55ad015",
        "shipping_address": "Calle 123 #45-67",
        "shipping_city": "Bogota",
        "shipping_state": "Cundinamarca",
        "shipping_zip_code": "110111",
        "shipping_country": "Colombia",
    }


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    audit: AuditRecorder,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client bound to the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_recorder] = lambda: audit

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def api_headers(test_settings: Settings) -> dict[str, dict[str, str]]:
    """API key header per resource."""
    header = test_settings.api_key_header
    return {
        "customers": {header: test_settings.customers_api_key},
        "products": {header: test_settings.products_api_key},
        "orders": {header: test_settings.orders_api_key},
        "payments": {header: test_settings.payments_api_key},
        "tokenization": {header: test_settings.tokenization_api_key},
        "audit": {header: test_settings.audit_api_key},
    }
