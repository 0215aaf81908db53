"""
Pytest configuration and shared fixtures for AdGate tests.

Provides:
- mock_db_pool: asyncpg pool double whose acquire() is an async context
  manager yielding a connection with execute/fetch/fetchrow/fetchval mocks
- mock_conn: the connection inside mock_db_pool
- gate_settings: Settings with default thresholds, independent of .env
- now / make_gate_input: a fixed evaluation time and a GateInput factory

Services are patched where they look the pool up:

    with patch('adgate.services.baseline.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
        ...
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import AsyncMock, Mock

import pytest

from adgate.core.config import Settings
from adgate.models.schemas import GateInput


def pytest_configure(config) -> None:
    config.addinivalue_line(
        'markers',
        'policy: marks tests that enforce the forbidden-vocabulary and import boundaries'
    )


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg connection pool.

    Usage:
        mock_db_pool.acquire.return_value.__aenter__.return_value.fetchrow.return_value = {...}
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.release = AsyncMock(return_value=None)
    pool.close = AsyncMock(return_value=None)

    return pool


@pytest.fixture
def mock_conn(mock_db_pool: AsyncMock) -> AsyncMock:
    return mock_db_pool.acquire.return_value.__aenter__.return_value


# ============================================================
# SETTINGS AND INPUT FIXTURES
# ============================================================

@pytest.fixture
def gate_settings() -> Settings:
    """Default thresholds; no .env file and no webhook."""
    return Settings(_env_file=None, database_url=None, slack_webhook_url=None)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_gate_input(now: datetime) -> Callable[..., GateInput]:
    """
    Factory for a creative that passes every gate unless overridden.

    Example:
        gate_input = make_gate_input(age_hours=10, totalSpend=200)
    """
    def _make(age_hours: float = 72, **overrides: Any) -> GateInput:
        fields = {
            'firstSeenAt': now - timedelta(hours=age_hours),
            'totalSpend': 2500.0,
            'totalImpressions': 12000,
            'totalConversions': 150,
            'iosTrafficPercent': 0.2,
            'modeledConversionPercent': 0.1,
            'userAttributionWindow': '7d_click',
            'platformAttributionWindow': '7d_click',
        }
        fields.update(overrides)
        return GateInput(**fields)

    return _make
