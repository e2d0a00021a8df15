"""
Database provisioning for pgsandbox.

Creates a uniquely named database owned by the restricted role, installs the
pinned extension and the role's schema, and hands back a pool opened as the
restricted role.
"""

import logging
import weakref
from typing import TYPE_CHECKING, Optional

import asyncpg

from pgsandbox.config.config_manager import Credentials, PoolSettings
from pgsandbox.database.connection_manager import (
    CONNECT_ERRORS,
    ConnectionInit,
    ConnectivityError,
    PrivilegedConnectionCache,
    build_connection_uri,
    open_connection,
    open_pool,
    quote_ident,
    quote_literal,
)
from pgsandbox.database.naming import ReplacementCounter, sanitize_database_name

if TYPE_CHECKING:
    from pgsandbox.database.instance import PostgresInstance

logger = logging.getLogger(__name__)

# A dropped connection mid-statement surfaces like a failed connect
STATEMENT_ERRORS = CONNECT_ERRORS


class ProvisioningError(Exception):
    """Raised when an SQL step of the provisioning sequence fails."""

    def __init__(self, database: str, step: str, message: str):
        self.database = database
        self.step = step
        super().__init__(f"step={step} database={database!r}: {message}")


class ProvisionedDatabase:
    """
    A freshly provisioned database and its restricted-role pool.

    The caller owns the pool. The reference to the instance is weak and only
    informational; closing this object never touches the administrative pools,
    and the server-side database is left in place.
    """

    def __init__(
        self,
        name: str,
        schema: str,
        pool: asyncpg.Pool,
        instance: Optional['PostgresInstance'] = None
    ):
        self.name = name
        self.schema = schema
        self._pool = pool
        self._instance_ref = weakref.ref(instance) if instance is not None else None

    @property
    def pool(self) -> asyncpg.Pool:
        """Restricted-role connection pool for querying."""
        return self._pool

    @property
    def instance(self) -> Optional['PostgresInstance']:
        """Instance this database was provisioned on, if it is still alive."""
        if self._instance_ref is None:
            return None
        return self._instance_ref()

    async def close(self):
        """Close the restricted-role pool."""
        await self._pool.close()
        logger.debug(f"Closed pool for provisioned database={self.name!r}")

    async def __aenter__(self) -> 'ProvisionedDatabase':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def __repr__(self) -> str:
        return f"ProvisionedDatabase(name={self.name!r}, schema={self.schema!r})"


class DatabaseProvisioner:
    """
    Runs the provisioning sequence against the shared server.

    Steps that already ran are not rolled back when a later step fails.
    """

    STEP_CREATE_DATABASE = 'create_database'
    STEP_CREATE_EXTENSION = 'create_extension'
    STEP_CREATE_SCHEMA = 'create_schema'

    ENCODING = 'UTF8'
    LOCALE = 'en_US.utf8'

    def __init__(
        self,
        cache: PrivilegedConnectionCache,
        credentials: Credentials,
        counter: ReplacementCounter,
        settings: Optional[PoolSettings] = None,
        connection_init: Optional[ConnectionInit] = None
    ):
        """
        Initialize DatabaseProvisioner.

        Args:
            cache: Administrative pool cache
            credentials: Role credentials
            counter: Counter used to disambiguate shortened names
            settings: Pool sizing, timeouts and the pinned extension
            connection_init: Optional hook run on every new connection
        """
        self.cache = cache
        self.credentials = credentials
        self.counter = counter
        self.settings = settings or PoolSettings()
        self.connection_init = connection_init

    def sanitize(self, requested_name: str) -> str:
        return sanitize_database_name(requested_name, self.counter)

    def create_database_sql(self, database: str) -> str:
        return (
            f"CREATE DATABASE {quote_ident(database)} WITH\n"
            f"    OWNER = {quote_ident(self.credentials.restricted_user)}\n"
            f"    TEMPLATE = template0\n"
            f"    ENCODING = {quote_literal(self.ENCODING)}\n"
            f"    LC_COLLATE = {quote_literal(self.LOCALE)}\n"
            f"    LC_CTYPE = {quote_literal(self.LOCALE)}\n"
            f"    TABLESPACE = pg_default\n"
            f"    CONNECTION LIMIT = -1"
        )

    def create_extension_sql(self) -> str:
        sql = f"CREATE EXTENSION IF NOT EXISTS {quote_ident(self.settings.extension)}\n    SCHEMA public"
        if self.settings.extension_version:
            sql += f"\n    VERSION {quote_literal(self.settings.extension_version)}"
        return sql

    def create_schema_sql(self) -> str:
        role = quote_ident(self.credentials.restricted_user)
        return f"CREATE SCHEMA IF NOT EXISTS {role} AUTHORIZATION {role}"

    async def _execute(self, executor, database: str, step: str, sql: str):
        """Run one step, wrapping driver errors with the step's context."""
        try:
            await executor.execute(sql)
        except STATEMENT_ERRORS as e:
            logger.error(f"Provisioning step {step} failed for database={database!r}: {e}")
            raise ProvisioningError(database, step, str(e)) from e

    async def _open_restricted_pool(self, database: str) -> asyncpg.Pool:
        try:
            return await open_pool(
                build_connection_uri(
                    self.cache.coordinates,
                    self.credentials.restricted_user,
                    self.credentials.restricted_password,
                    database
                ),
                database,
                max_size=self.settings.pool_max_size,
                timeout=self.settings.connect_timeout,
                connection_init=self.connection_init
            )
        except ConnectivityError as e:
            logger.error(
                f"Cannot open pool for database={database!r} as {self.credentials.restricted_user!r}: {e}"
            )
            raise

    async def provision(
        self,
        requested_name: str,
        instance: Optional['PostgresInstance'] = None
    ) -> ProvisionedDatabase:
        """
        Create a database for ``requested_name`` and connect to it as the restricted role.

        Args:
            requested_name: Logical name, usually a test id
            instance: Instance recorded as the weak back-reference

        Returns:
            ProvisionedDatabase owning a restricted-role pool

        Raises:
            ProvisioningError: If an SQL step fails
            ConnectivityError: If a pool or connection cannot be opened
        """
        database = self.sanitize(requested_name)
        admin_pool = await self.cache.acquire(self.credentials.default_database)

        await self._execute(admin_pool, database, self.STEP_CREATE_DATABASE, self.create_database_sql(database))

        # One-off admin connection to the new database, not a cached pool
        try:
            admin_conn = await open_connection(
                self.cache.connection_uri(database),
                database,
                timeout=self.settings.connect_timeout,
                connection_init=self.connection_init
            )
        except ConnectivityError as e:
            logger.error(f"Cannot connect to new database={database!r} as admin: {e}")
            raise

        try:
            await self._execute(admin_conn, database, self.STEP_CREATE_EXTENSION, self.create_extension_sql())
            await self._execute(admin_conn, database, self.STEP_CREATE_SCHEMA, self.create_schema_sql())

            pool = await self._open_restricted_pool(database)
        finally:
            await admin_conn.close()

        logger.info(f"Provisioned database={database!r} for requested name {requested_name!r}")
        return ProvisionedDatabase(
            name=database,
            schema=self.credentials.restricted_user,
            pool=pool,
            instance=instance
        )
