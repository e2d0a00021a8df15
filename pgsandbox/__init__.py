"""
pgsandbox

Provisions isolated, uniquely named PostgreSQL databases on a shared server
for use as test fixtures.
"""

from .config import (
    ConfigManager,
    ConfigurationError,
    Credentials,
    PoolSettings,
    ServerCoordinates,
)
from .database import (
    ConnectivityError,
    InstanceClosedError,
    NamingConstraintViolation,
    PostgresInstance,
    ProvisionedDatabase,
    ProvisioningError,
    new_instance,
    sanitize_database_name,
)

__version__ = "0.1.0"

__all__ = [
    'ConfigManager',
    'ConfigurationError',
    'ConnectivityError',
    'Credentials',
    'InstanceClosedError',
    'NamingConstraintViolation',
    'PoolSettings',
    'PostgresInstance',
    'ProvisionedDatabase',
    'ProvisioningError',
    'ServerCoordinates',
    'new_instance',
    'sanitize_database_name',
]
