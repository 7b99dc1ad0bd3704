"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone

import pytest

from strata.config import StrataConfig
from strata.engine.store import LocalTableStore
from strata.idempotency import LocalReplayLedger, ReplayIdempotencyController

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
T3 = datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)
INGEST_DATE = date(2024, 1, 1)


@pytest.fixture
def config():
    """Config with no backoff so retry tests do not sleep."""
    return StrataConfig(
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        hash_salt="test-salt",
    )


@pytest.fixture
def store():
    return LocalTableStore()


@pytest.fixture
def replay(tmp_path):
    return ReplayIdempotencyController(LocalReplayLedger(str(tmp_path / "state.db")))


@pytest.fixture
def fixed_clock():
    return lambda: T1


@pytest.fixture
def sample_orders_data():
    """Sample raw orders from a point-of-sale source."""
    return [
        {"order_id": "ORD-001", "customer_id": "CUST-123", "quantity": "2", "price": "19.99"},
        {"order_id": "ORD-002", "customer_id": "CUST-456", "quantity": "1", "price": "5.00"},
    ]
