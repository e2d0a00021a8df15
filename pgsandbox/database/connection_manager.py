"""
Privileged connection management for pgsandbox.

Provides asyncpg pool creation, connection string building, and a cache of
administrative pools keyed by target database with liveness-based recreation.
"""

import asyncio
import json
import logging
import urllib.parse
from typing import Any, Awaitable, Callable, Dict, Optional

import asyncpg

from pgsandbox.config.config_manager import Credentials, PoolSettings, ServerCoordinates

logger = logging.getLogger(__name__)

ConnectionInit = Callable[[asyncpg.Connection], Awaitable[Any]]

# Errors asyncpg surfaces when a server cannot be reached or rejects a login
CONNECT_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class ConnectivityError(Exception):
    """Raised when a pool or connection cannot be opened or fails its liveness probe."""

    def __init__(self, database: str, message: str):
        self.database = database
        super().__init__(f"database={database!r}: {message}")


class InstanceClosedError(RuntimeError):
    """Raised when a closed instance or pool cache is used again."""
    pass


def quote_ident(value: str) -> str:
    """Quote an SQL identifier, doubling embedded double quotes."""
    return '"' + value.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote an SQL string literal, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def _quote_part(part: str) -> str:
    return urllib.parse.quote(part, safe='')


def build_connection_uri(
    coordinates: ServerCoordinates,
    username: str,
    password: str,
    database: str
) -> str:
    """Build a postgresql:// connection string for the given role and database."""
    return (
        f"postgresql://{_quote_part(username)}:{_quote_part(password)}"
        f"@{coordinates.host}:{coordinates.port}/{_quote_part(database)}"
        f"?sslmode={coordinates.sslmode}"
    )


def mask_password(uri: str) -> str:
    """Hide the password of a connection string for logging."""
    parsed = urllib.parse.urlsplit(uri)
    if parsed.password is None:
        return uri
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":****@", 1)
    return urllib.parse.urlunsplit(parsed._replace(netloc=netloc))


def _connection_initializer(connection_init: Optional[ConnectionInit]) -> ConnectionInit:
    """Wrap the caller's init hook behind the JSON codec registration."""
    async def init(conn: asyncpg.Connection):
        for type_name in ('json', 'jsonb'):
            await conn.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema='pg_catalog'
            )
        if connection_init is not None:
            await connection_init(conn)

    return init


async def open_pool(
    uri: str,
    database: str,
    *,
    max_size: int,
    timeout: float,
    connection_init: Optional[ConnectionInit] = None
) -> asyncpg.Pool:
    """
    Open an asyncpg pool.

    Args:
        uri: Connection string
        database: Target database, used for error context
        max_size: Maximum number of pooled connections
        timeout: Connect timeout in seconds per connection
        connection_init: Optional hook run on every new connection

    Returns:
        Ready asyncpg pool

    Raises:
        ConnectivityError: If the pool cannot be opened
    """
    logger.debug(f"Opening pool: {mask_password(uri)}")
    try:
        return await asyncpg.create_pool(
            uri,
            min_size=1,
            max_size=max_size,
            timeout=timeout,
            init=_connection_initializer(connection_init)
        )
    except CONNECT_ERRORS as e:
        raise ConnectivityError(database, f"failed to open pool: {e}") from e


async def open_connection(
    uri: str,
    database: str,
    *,
    timeout: float,
    connection_init: Optional[ConnectionInit] = None
) -> asyncpg.Connection:
    """
    Open a single asyncpg connection.

    Raises:
        ConnectivityError: If the connection cannot be established
    """
    logger.debug(f"Opening connection: {mask_password(uri)}")
    try:
        conn = await asyncpg.connect(uri, timeout=timeout)
    except CONNECT_ERRORS as e:
        raise ConnectivityError(database, f"failed to connect: {e}") from e

    try:
        await _connection_initializer(connection_init)(conn)
    except BaseException:
        await conn.close()
        raise
    return conn


class PrivilegedConnectionCache:
    """
    Cache of administrative pools, one per target database.

    The map lock only guards lookups and inserts; per-database creation locks
    serialize probing and opening for one key without blocking other keys.
    """

    def __init__(
        self,
        coordinates: ServerCoordinates,
        credentials: Credentials,
        settings: Optional[PoolSettings] = None,
        connection_init: Optional[ConnectionInit] = None
    ):
        """
        Initialize PrivilegedConnectionCache.

        Args:
            coordinates: Server coordinates
            credentials: Role credentials; the admin role is used here
            settings: Pool sizing and timeouts
            connection_init: Optional hook run on every new connection
        """
        self.coordinates = coordinates
        self.credentials = credentials
        self.settings = settings or PoolSettings()
        self.connection_init = connection_init

        self._pools: Dict[str, asyncpg.Pool] = {}
        self._creation_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __contains__(self, database: str) -> bool:
        return database in self._pools

    def __len__(self) -> int:
        return len(self._pools)

    def connection_uri(self, database: str) -> str:
        """Admin connection string for ``database``."""
        return build_connection_uri(
            self.coordinates,
            self.credentials.admin_user,
            self.credentials.admin_password,
            database
        )

    def _ensure_open(self):
        if self._closed:
            raise InstanceClosedError("Privileged connection cache is closed")

    async def acquire(self, database: str, timeout: Optional[float] = None) -> asyncpg.Pool:
        """
        Return a live administrative pool targeting ``database``.

        Args:
            database: Target database name
            timeout: Overall deadline in seconds

        Raises:
            ConnectivityError: If a replacement pool cannot be opened
            InstanceClosedError: If the cache was closed
        """
        if timeout is None:
            return await self._acquire(database)
        return await asyncio.wait_for(self._acquire(database), timeout)

    async def _acquire(self, database: str) -> asyncpg.Pool:
        self._ensure_open()
        async with self._lock:
            creation_lock = self._creation_locks.setdefault(database, asyncio.Lock())

        async with creation_lock:
            async with self._lock:
                self._ensure_open()
                pool = self._pools.get(database)

            if pool is not None:
                if await self._is_alive(pool):
                    logger.debug(f"Reusing admin pool for database={database!r}")
                    return pool

                logger.warning(f"Admin pool for database={database!r} failed liveness probe, replacing it")
                async with self._lock:
                    if self._pools.get(database) is pool:
                        del self._pools[database]
                pool.terminate()

            pool = await open_pool(
                self.connection_uri(database),
                database,
                max_size=self.settings.admin_pool_max_size,
                timeout=self.settings.connect_timeout,
                connection_init=self.connection_init
            )

            async with self._lock:
                if self._closed:
                    pool.terminate()
                    raise InstanceClosedError("Privileged connection cache was closed while opening a pool")
                self._pools[database] = pool

            logger.info(f"Opened admin pool for database={database!r}")
            return pool

    async def _is_alive(self, pool: asyncpg.Pool) -> bool:
        """Liveness probe: one round-trip on a pooled connection."""
        try:
            return await pool.fetchval('SELECT 1', timeout=self.settings.connect_timeout) == 1
        except CONNECT_ERRORS as e:
            logger.debug(f"Liveness probe failed: {e}")
            return False

    async def close_all(self):
        """Close every cached pool; the cache cannot be used afterwards."""
        async with self._lock:
            self._closed = True
            pools = list(self._pools.items())
            self._pools.clear()
            self._creation_locks.clear()

        for database, pool in pools:
            await pool.close()
            logger.info(f"Closed admin pool for database={database!r}")
