"""Configuration management package for pgsandbox."""

from .config_manager import (
    ConfigManager,
    ConfigurationError,
    Credentials,
    PoolSettings,
    ServerCoordinates,
)

__all__ = [
    'ConfigManager',
    'ConfigurationError',
    'Credentials',
    'PoolSettings',
    'ServerCoordinates',
]
