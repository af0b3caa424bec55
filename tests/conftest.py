"""
Pytest configuration and shared fixtures for SmartDesk tests.
"""
from datetime import datetime, timedelta, timezone

import pytest

from core.config.settings import (
    APISettings,
    AuthSettings,
    DatabaseSettings,
    LoggingSettings,
    PortfolioSettings,
    RedisSettings,
    Settings,
    SmartAPISettings,
)
from core.trading.order_models import Order, OrderStatus
from core.trading.portfolio_models import Holding
from services.auth.models import BrokerSession, User
from services.auth.security import get_password_hash
from tests.fakes import FakeGateway, InMemoryOrderRepository, InMemoryPortfolioRepository, InMemoryUserRepository


@pytest.fixture
def test_settings(tmp_path):
    """Test settings: SQLite file database, no Redis, no throttling."""
    return Settings(
        environment="testing",
        database=DatabaseSettings(postgres_url=f"sqlite+aiosqlite:///{tmp_path / 'smartdesk.db'}"),
        redis=RedisSettings(cache_enabled=False),
        auth=AuthSettings(secret_key="test-secret-key-for-unit-tests-only"),
        smartapi=SmartAPISettings(api_key="test-api-key", retry_attempts=1, retry_max_wait_seconds=0),
        portfolio=PortfolioSettings(price_batch_size=2, price_batch_delay_seconds=0),
        api=APISettings(rate_limit_enabled=False),
        logging=LoggingSettings(file_enabled=False, logs_dir=str(tmp_path / "logs")),
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def user_repository():
    return InMemoryUserRepository()


@pytest.fixture
def portfolio_repository():
    return InMemoryPortfolioRepository()


@pytest.fixture
def order_repository():
    return InMemoryOrderRepository()


@pytest.fixture
def make_user():
    def _make(**overrides):
        data = {
            "client_code": "A123",
            "name": "Test User",
            "email": "trader@example.com",
            "phone": "9876543210",
            "hashed_password": get_password_hash("secret123"),
        }
        data.update(overrides)
        return User(**data)
    return _make


@pytest.fixture
def connected_session():
    return BrokerSession(
        access_token="smart-jwt",
        refresh_token="smart-refresh",
        feed_token="feed",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=8),
    )


@pytest.fixture
def make_holding():
    def _make(symbol="SBIN-EQ", exchange="NSE", quantity=10, average_price=100.0, current_price=110.0,
              instrument_token="3045"):
        return Holding(symbol=symbol, exchange=exchange, instrument_token=instrument_token,
                       quantity=quantity, average_price=average_price, current_price=current_price)
    return _make


@pytest.fixture
def make_order():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "user_id": "user-1",
            "client_order_id": f"ORD_1700000000000_{counter['n']:08X}",
            "symbol": "SBIN-EQ",
            "exchange": "NSE",
            "instrument_token": "3045",
            "order_type": "LIMIT",
            "transaction_type": "BUY",
            "product_type": "DELIVERY",
            "quantity": 10,
            "price": 500.0,
            "status": OrderStatus.OPEN,
        }
        data.update(overrides)
        return Order(**data)
    return _make
