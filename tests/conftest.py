"""
Centralized test configuration and fixtures for pgsandbox.

This module provides shared test fixtures that:
1. Configure logging for the test session
2. Provide asyncpg pool and connection mocks for unit tests
3. Register the pgsandbox pytest plugin for integration tests
"""

import logging
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from pgsandbox.config.config_manager import Credentials, PoolSettings, ServerCoordinates

pytest_plugins = ["pgsandbox.testing.fixtures"]

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def make_pool_mock(alive: bool = True) -> MagicMock:
    """asyncpg.Pool stand-in: coroutine methods are AsyncMocks, terminate is sync."""
    pool = MagicMock(name="Pool")
    pool.fetchval = AsyncMock(return_value=1 if alive else None)
    pool.execute = AsyncMock(return_value="OK")
    pool.close = AsyncMock()
    pool.terminate = MagicMock()
    return pool


def make_connection_mock() -> MagicMock:
    """asyncpg.Connection stand-in recording executed statements."""
    conn = MagicMock(name="Connection")
    conn.execute = AsyncMock(return_value="OK")
    conn.set_type_codec = AsyncMock()
    conn.close = AsyncMock()
    return conn


def executed_sql(mock: MagicMock) -> List[str]:
    """Statements passed to a mock's execute(), in call order."""
    return [c.args[0] for c in mock.execute.call_args_list]


@pytest.fixture
def sql_of():
    return executed_sql


@pytest.fixture
def coordinates() -> ServerCoordinates:
    return ServerCoordinates(host="db.test", port=5433, sslmode="disable")


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        admin_user="postgres",
        admin_password="password",
        restricted_user="unprivileged",
        default_database="postgres"
    )


@pytest.fixture
def pool_settings() -> PoolSettings:
    return PoolSettings(connect_timeout=2.0, admin_pool_max_size=2, pool_max_size=3)


@pytest.fixture
def make_pool():
    """Factory for asyncpg pool mocks."""
    return make_pool_mock


@pytest.fixture
def make_connection():
    """Factory for asyncpg connection mocks."""
    return make_connection_mock
