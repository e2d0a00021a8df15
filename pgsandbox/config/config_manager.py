"""
Configuration Manager for pgsandbox

Handles server coordinates, role credentials, pool sizing and the pinned
extension, loaded from environment files and environment variables.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when connection parameters are missing or malformed."""
    pass


VALID_SSL_MODES = (
    'disable',
    'allow',
    'prefer',
    'require',
    'verify-ca',
    'verify-full',
)


@dataclass(frozen=True)
class ServerCoordinates:
    """
    Where the shared PostgreSQL server can be reached.

    Attributes:
        host: Hostname or IP address of the server
        port: TCP port the server listens on
        sslmode: libpq sslmode passed on every connection string
    """
    host: str
    port: int
    sslmode: str = 'disable'

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("Server host must not be empty")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigurationError(f"Server port must be an integer, got {self.port!r}")
        if not (1 <= self.port <= 65535):
            raise ConfigurationError(f"Server port must be between 1 and 65535, got {self.port}")
        if self.sslmode not in VALID_SSL_MODES:
            raise ConfigurationError(
                f"Invalid sslmode '{self.sslmode}' - expected one of {', '.join(VALID_SSL_MODES)}"
            )


@dataclass(frozen=True)
class Credentials:
    """
    Role credentials used against the shared server.

    Attributes:
        admin_user: Superuser-equivalent role used for management statements
        admin_password: Password of the admin role
        restricted_user: Unprivileged role owning every provisioned database
        restricted_password: Password of the restricted role
        default_database: Database the admin pool connects to for CREATE DATABASE
    """
    admin_user: str
    admin_password: str
    restricted_user: str = 'unprivileged'
    restricted_password: Optional[str] = None
    default_database: str = 'postgres'

    def __post_init__(self):
        if not self.admin_user:
            raise ConfigurationError("Admin user must not be empty")
        if not self.restricted_user:
            raise ConfigurationError("Restricted user must not be empty")
        if not self.default_database:
            raise ConfigurationError("Default database must not be empty")
        if self.restricted_user == self.admin_user:
            raise ConfigurationError("Restricted user must differ from the admin user")
        if self.restricted_password is None:
            # One shared password, as the server image is started with a single secret
            object.__setattr__(self, 'restricted_password', self.admin_password)


@dataclass(frozen=True)
class PoolSettings:
    """
    Connection and provisioning tunables.

    Attributes:
        connect_timeout: Seconds allowed for establishing a single connection
        admin_pool_max_size: Upper bound of connections per administrative pool
        pool_max_size: Upper bound of connections per provisioned database pool
        extension: Extension installed in every provisioned database
        extension_version: Pinned version of that extension
    """
    connect_timeout: float = 10.0
    admin_pool_max_size: int = 4
    pool_max_size: int = 10
    extension: str = 'btree_gist'
    extension_version: str = '1.5'

    def __post_init__(self):
        if self.connect_timeout <= 0:
            raise ConfigurationError(f"Connect timeout must be positive: {self.connect_timeout}")
        if self.admin_pool_max_size < 1:
            raise ConfigurationError(f"Admin pool size must be at least 1: {self.admin_pool_max_size}")
        if self.pool_max_size < 1:
            raise ConfigurationError(f"Pool size must be at least 1: {self.pool_max_size}")
        if not self.extension:
            raise ConfigurationError("Extension name must not be empty")


class ConfigManager:
    """
    Central configuration management for pgsandbox.

    Provides:
    - Environment file loading with precedence
    - Server coordinates and role credentials from PGSANDBOX_* variables
    - Pool sizing and extension pinning
    - Configuration validation
    """

    ENV_PREFIX = 'PGSANDBOX_'

    DEFAULTS = {
        'HOST': 'localhost',
        'PORT': '5432',
        'SSLMODE': 'disable',
        'ADMIN_USER': 'postgres',
        'ADMIN_PASSWORD': 'password',
        'RESTRICTED_USER': 'unprivileged',
        'DEFAULT_DATABASE': 'postgres',
        'CONNECT_TIMEOUT': '10',
        'ADMIN_POOL_MAX_SIZE': '4',
        'POOL_MAX_SIZE': '10',
        'EXTENSION': 'btree_gist',
        'EXTENSION_VERSION': '1.5',
    }

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize ConfigManager.

        Args:
            config_dir: Directory containing environment files (default: cwd)
        """
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self._env_vars: Dict[str, str] = {}
        self._load_env_files()

    def _load_env_files(self):
        """Load environment files with precedence: .env.<ENV> > .env"""
        env = os.getenv('ENV')
        env_files = ['.env']
        if env:
            env_files.append(f'.env.{env}')

        for env_file in env_files:
            env_path = self.config_dir / env_file
            if env_path.exists():
                self._load_env_file(env_path)

    def _load_env_file(self, env_path: Path):
        """Load a single environment file into our internal env_vars dict."""
        try:
            with open(env_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        self._env_vars[key.strip()] = value.strip()
        except OSError as e:
            raise ConfigurationError(f"Cannot read environment file {env_path}: {e}") from e
        logger.debug(f"Loaded environment file {env_path}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a PGSANDBOX_ setting: os.environ first, then env files, then defaults."""
        env_var = f"{self.ENV_PREFIX}{key}"
        value = os.getenv(env_var)
        if value is None:
            value = self._env_vars.get(env_var)
        if value is None:
            value = self.DEFAULTS.get(key, default)
        return value

    def _get_int(self, key: str) -> int:
        value = self.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid {self.ENV_PREFIX}{key}: '{value}' - must be an integer")

    def _get_float(self, key: str) -> float:
        value = self.get(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid {self.ENV_PREFIX}{key}: '{value}' - must be a number")

    @property
    def is_server_configured(self) -> bool:
        """Check whether an existing server was pointed at explicitly."""
        return bool(os.getenv(f"{self.ENV_PREFIX}HOST") or self._env_vars.get(f"{self.ENV_PREFIX}HOST"))

    def coordinates(self) -> ServerCoordinates:
        """Build server coordinates from configuration."""
        return ServerCoordinates(
            host=self.get('HOST'),
            port=self._get_int('PORT'),
            sslmode=self.get('SSLMODE'),
        )

    def credentials(self) -> Credentials:
        """Build role credentials from configuration."""
        return Credentials(
            admin_user=self.get('ADMIN_USER'),
            admin_password=self.get('ADMIN_PASSWORD'),
            restricted_user=self.get('RESTRICTED_USER'),
            restricted_password=self.get('RESTRICTED_PASSWORD'),
            default_database=self.get('DEFAULT_DATABASE'),
        )

    def pool_settings(self) -> PoolSettings:
        """Build pool and extension settings from configuration."""
        return PoolSettings(
            connect_timeout=self._get_float('CONNECT_TIMEOUT'),
            admin_pool_max_size=self._get_int('ADMIN_POOL_MAX_SIZE'),
            pool_max_size=self._get_int('POOL_MAX_SIZE'),
            extension=self.get('EXTENSION'),
            extension_version=self.get('EXTENSION_VERSION'),
        )
