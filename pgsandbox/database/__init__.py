"""
Database package for pgsandbox.

Provides name sanitization, administrative pool caching and database
provisioning against a shared PostgreSQL server.
"""

from .connection_manager import (
    ConnectivityError,
    InstanceClosedError,
    PrivilegedConnectionCache,
)
from .instance import InstanceState, PostgresInstance, new_instance
from .naming import (
    MAX_IDENTIFIER_LENGTH,
    NamingConstraintViolation,
    ReplacementCounter,
    sanitize_database_name,
)
from .provisioner import DatabaseProvisioner, ProvisionedDatabase, ProvisioningError

__all__ = [
    'ConnectivityError',
    'DatabaseProvisioner',
    'InstanceClosedError',
    'InstanceState',
    'MAX_IDENTIFIER_LENGTH',
    'NamingConstraintViolation',
    'PostgresInstance',
    'PrivilegedConnectionCache',
    'ProvisionedDatabase',
    'ProvisioningError',
    'ReplacementCounter',
    'new_instance',
    'sanitize_database_name',
]
