"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from steam_billing.config import Settings
from steam_billing.core.catalog import Product, ProductCatalog
from steam_billing.database.connection import close_db, create_engine, init_db
from steam_billing.database.repository import TransactionRecord, TransactionStore
from steam_billing.integrations.steam_client import SteamClient


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings backed by a throwaway SQLite file."""
    return Settings(
        steam_webkey="test-webkey",
        steam_app_id="480",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'steam_billing_test.db'}",
        steam_retry_max_attempts=3,
        steam_retry_base_delay=0,
        app_name="steam-billing-test",
        app_env="test",
        log_level="DEBUG",
        metrics_port=None,
    )


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test database engine with all tables."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest_asyncio.fixture
async def store(db_engine: AsyncEngine) -> TransactionStore:
    """Transaction store over the test database."""
    return TransactionStore(db_engine)


@pytest.fixture
def catalog() -> ProductCatalog:
    """Catalog with one subscription and one one-off item."""
    return ProductCatalog(
        [
            Product(
                id=42,
                description="Premium monthly",
                price_per_currency={"USD": 500, "EUR": 450},
                period="Month",
                frequency=1,
            ),
            Product(id=7, description="Gem pack", price_per_currency={"USD": 199}),
        ]
    )


@pytest.fixture
def mock_steam_client() -> AsyncMock:
    """Steam gateway double."""
    return AsyncMock(spec=SteamClient)


@pytest.fixture
def make_record() -> Callable[..., TransactionRecord]:
    """Factory for transaction rows with sensible defaults."""

    def _make(**overrides: Any) -> TransactionRecord:
        values = {
            "orderid": "O1",
            "transid": "T1",
            "steamid": "76561198000000001",
            "status": "Approved",
            "currency": "USD",
            "country": "US",
            "timecreated": datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
            "timeupdated": datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
            "agreementid": "A1",
            "agreementstatus": "Active",
            "nextpayment": None,
            "itemid": "42",
            "amount": "500",
            "vat": "0",
        }
        values.update(overrides)
        return TransactionRecord(**values)

    return _make


@pytest.fixture
def report_order() -> Callable[..., dict]:
    """Factory for raw GetReport order entries."""

    def _make(**overrides: Any) -> dict:
        order = {
            "orderid": "O1",
            "transid": "T1",
            "steamid": "76561198000000001",
            "status": "Approved",
            "currency": "USD",
            "time": "2024-05-01T12:00:00Z",
            "country": "US",
            "usstate": "",
            "timecreated": "2024-05-01T11:58:00Z",
            "agreementid": "A1",
            "agreementstatus": "Active",
            "nextpayment": "20240601",
            "items": [{"itemid": 42, "qty": 1, "amount": 500, "vat": 0, "itemstatus": "Approved"}],
        }
        order.update(overrides)
        return order

    return _make
