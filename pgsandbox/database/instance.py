"""
Handle on the shared PostgreSQL server.

One PostgresInstance exists per running server. It ensures the restricted role
exists, provisions databases on request and owns every administrative pool.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

import asyncpg

from pgsandbox.config.config_manager import ConfigManager, Credentials, PoolSettings, ServerCoordinates
from pgsandbox.database.connection_manager import (
    ConnectionInit,
    InstanceClosedError,
    PrivilegedConnectionCache,
    quote_ident,
    quote_literal,
)
from pgsandbox.database.naming import ReplacementCounter
from pgsandbox.database.provisioner import (
    STATEMENT_ERRORS,
    DatabaseProvisioner,
    ProvisionedDatabase,
    ProvisioningError,
)

logger = logging.getLogger(__name__)


class InstanceState(str, Enum):
    """Lifecycle of a PostgresInstance."""
    STARTING = "starting"
    READY = "ready"
    CLOSED = "closed"


class PostgresInstance:
    """
    Long-lived handle on one shared PostgreSQL server.

    Attributes:
        coordinates: Host, port and sslmode of the server
        credentials: Admin and restricted role credentials
        settings: Pool sizing, timeouts and the pinned extension
        counter: Name-collision counter shared by all provisioning calls
        cache: Administrative pools keyed by database
        state: Current lifecycle state
    """

    STEP_CREATE_ROLE = 'create_role'

    def __init__(
        self,
        coordinates: ServerCoordinates,
        credentials: Credentials,
        settings: Optional[PoolSettings] = None,
        connection_init: Optional[ConnectionInit] = None
    ):
        """
        Initialize PostgresInstance. Use ``create`` to obtain a ready instance.

        Args:
            coordinates: Server coordinates reported by whatever started the server
            credentials: Role credentials
            settings: Pool sizing, timeouts and the pinned extension
            connection_init: Optional hook run on every new connection
        """
        self.coordinates = coordinates
        self.credentials = credentials
        self.settings = settings or PoolSettings()
        self.counter = ReplacementCounter()
        self.cache = PrivilegedConnectionCache(
            coordinates,
            credentials,
            self.settings,
            connection_init=connection_init
        )
        self.provisioner = DatabaseProvisioner(
            self.cache,
            credentials,
            self.counter,
            self.settings,
            connection_init=connection_init
        )
        self.state = InstanceState.STARTING

    @classmethod
    async def create(
        cls,
        coordinates: ServerCoordinates,
        credentials: Credentials,
        settings: Optional[PoolSettings] = None,
        connection_init: Optional[ConnectionInit] = None,
        timeout: Optional[float] = None
    ) -> 'PostgresInstance':
        """
        Create a ready instance for a server that already accepts connections.

        Raises:
            ConnectivityError: If the admin pool cannot be opened
            ProvisioningError: If the restricted role cannot be created
        """
        instance = cls(coordinates, credentials, settings, connection_init)
        try:
            if timeout is None:
                await instance._ensure_restricted_role()
            else:
                await asyncio.wait_for(instance._ensure_restricted_role(), timeout)
        except BaseException:
            await instance.close()
            raise

        instance.state = InstanceState.READY
        logger.info(f"PostgreSQL instance ready at {coordinates.host}:{coordinates.port}")
        return instance

    @classmethod
    async def from_config(
        cls,
        config: Optional[ConfigManager] = None,
        connection_init: Optional[ConnectionInit] = None,
        timeout: Optional[float] = None
    ) -> 'PostgresInstance':
        """Create a ready instance from PGSANDBOX_* configuration."""
        config = config or ConfigManager()
        return await cls.create(
            config.coordinates(),
            config.credentials(),
            config.pool_settings(),
            connection_init=connection_init,
            timeout=timeout
        )

    @property
    def host(self) -> str:
        return self.coordinates.host

    @property
    def port(self) -> int:
        return self.coordinates.port

    @property
    def sslmode(self) -> str:
        return self.coordinates.sslmode

    def create_role_sql(self) -> str:
        return (
            f"CREATE USER {quote_ident(self.credentials.restricted_user)} WITH\n"
            f"    NOSUPERUSER\n"
            f"    NOCREATEDB\n"
            f"    NOCREATEROLE\n"
            f"    INHERIT\n"
            f"    NOREPLICATION\n"
            f"    CONNECTION LIMIT -1\n"
            f"    PASSWORD {quote_literal(self.credentials.restricted_password)}"
        )

    async def _ensure_restricted_role(self):
        """Create the restricted role unless it already exists."""
        database = self.credentials.default_database
        pool = await self.cache.acquire(database)
        try:
            await pool.execute(self.create_role_sql())
        except (asyncpg.exceptions.DuplicateObjectError, asyncpg.exceptions.UniqueViolationError):
            logger.info(f"Restricted role {self.credentials.restricted_user!r} already exists")
            return
        except STATEMENT_ERRORS as e:
            logger.error(f"Failed to create restricted role {self.credentials.restricted_user!r}: {e}")
            raise ProvisioningError(database, self.STEP_CREATE_ROLE, str(e)) from e

        logger.info(f"Created restricted role {self.credentials.restricted_user!r}")

    async def provision(self, name: str, timeout: Optional[float] = None) -> ProvisionedDatabase:
        """
        Provision a fresh database for ``name``.

        Args:
            name: Requested database name, sanitized before use
            timeout: Deadline in seconds for the whole sequence

        Returns:
            ProvisionedDatabase owned by the caller

        Raises:
            InstanceClosedError: If the instance is not ready
            ProvisioningError: If an SQL step fails
            ConnectivityError: If a pool or connection cannot be opened
        """
        if self.state is not InstanceState.READY:
            raise InstanceClosedError(f"Cannot provision database on a {self.state.value} instance")

        coro = self.provisioner.provision(name, instance=self)
        if timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout)

    async def close(self):
        """Close every administrative pool. Provisioned pools stay open."""
        if self.state is InstanceState.CLOSED:
            return
        self.state = InstanceState.CLOSED
        await self.cache.close_all()
        logger.info(f"PostgreSQL instance at {self.host}:{self.port} closed")

    async def __aenter__(self) -> 'PostgresInstance':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def new_instance(
    coordinates: ServerCoordinates,
    credentials: Credentials,
    settings: Optional[PoolSettings] = None,
    connection_init: Optional[ConnectionInit] = None,
    timeout: Optional[float] = None
) -> PostgresInstance:
    """Create a ready PostgresInstance; see ``PostgresInstance.create``."""
    return await PostgresInstance.create(
        coordinates,
        credentials,
        settings,
        connection_init=connection_init,
        timeout=timeout
    )
