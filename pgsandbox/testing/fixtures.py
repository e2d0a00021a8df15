"""
pytest plugin exposing pgsandbox fixtures.

Enable it with ``pytest_plugins = ["pgsandbox.testing.fixtures"]``. The server
comes from PGSANDBOX_* configuration when PGSANDBOX_HOST is set, otherwise a
PostgreSQL container is started once per session.
"""

import logging
from typing import Tuple

import docker
import pytest
import pytest_asyncio

from pgsandbox.config.config_manager import ConfigManager, Credentials, ServerCoordinates
from pgsandbox.database.instance import PostgresInstance
from pgsandbox.testing.docker_manager import PostgresContainerManager

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def pg_config() -> ConfigManager:
    """Session-scoped pgsandbox configuration."""
    return ConfigManager()


@pytest.fixture(scope="session")
def pg_server(pg_config) -> Tuple[ServerCoordinates, Credentials]:
    """
    Coordinates and credentials of the shared server.

    Skips the requesting test when no server is configured and Docker is not
    available.
    """
    if pg_config.is_server_configured:
        logger.info("Using configured PostgreSQL server")
        yield pg_config.coordinates(), pg_config.credentials()
        return

    try:
        manager = PostgresContainerManager()
    except docker.errors.DockerException as e:
        pytest.skip(f"No PGSANDBOX_HOST configured and Docker is not available: {e}")

    try:
        try:
            coordinates = manager.start()
        except docker.errors.DockerException as e:
            pytest.skip(f"Could not start PostgreSQL container: {e}")
        yield coordinates, manager.credentials()
    finally:
        manager.cleanup_all()


@pytest.fixture(scope="session")
def pg_coordinates(pg_server) -> ServerCoordinates:
    return pg_server[0]


@pytest_asyncio.fixture
async def pg_instance(pg_server, pg_config):
    """Ready PostgresInstance, closed after the test."""
    coordinates, credentials = pg_server
    instance = await PostgresInstance.create(coordinates, credentials, pg_config.pool_settings())
    yield instance
    await instance.close()


@pytest_asyncio.fixture
async def provisioned_database(pg_instance, request):
    """Database named after the requesting test's node id."""
    database = await pg_instance.provision(request.node.nodeid)
    yield database
    await database.close()
