"""
pgsandbox Testing Infrastructure

Docker-backed PostgreSQL server management and pytest fixtures that hand each
test its own provisioned database.
"""

from .docker_manager import ContainerStartupError, PostgresContainerManager

__all__ = ['ContainerStartupError', 'PostgresContainerManager']
