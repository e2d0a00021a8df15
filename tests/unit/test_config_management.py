"""
Test suite for the pgsandbox configuration system.

Covers environment variable and env-file loading, defaults, and validation of
server coordinates, credentials and pool settings.
"""
import os
from unittest.mock import patch

import pytest

from pgsandbox.config.config_manager import (
    ConfigManager,
    ConfigurationError,
    Credentials,
    PoolSettings,
    ServerCoordinates,
)


class TestDefaults:
    """Test the configuration used when nothing is set"""

    def test_defaults_match_stock_postgres_image(self, tmp_path):
        # GIVEN: An empty environment and no env files
        with patch.dict(os.environ, {}, clear=True):
            # WHEN: ConfigManager loads configuration
            config = ConfigManager(config_dir=str(tmp_path))

            # THEN: Defaults point at a local stock server
            assert config.coordinates() == ServerCoordinates("localhost", 5432, "disable")
            credentials = config.credentials()
            assert credentials.admin_user == "postgres"
            assert credentials.restricted_user == "unprivileged"
            assert credentials.restricted_password == credentials.admin_password
            assert credentials.default_database == "postgres"
            assert config.pool_settings() == PoolSettings()
            assert not config.is_server_configured


class TestEnvironmentLoading:
    """Test precedence of environment variables and env files"""

    def test_environment_variables_are_used(self, tmp_path):
        env_vars = {
            'PGSANDBOX_HOST': 'db.internal',
            'PGSANDBOX_PORT': '6543',
            'PGSANDBOX_SSLMODE': 'require',
            'PGSANDBOX_ADMIN_USER': 'admin',
            'PGSANDBOX_ADMIN_PASSWORD': 'secret',
            'PGSANDBOX_RESTRICTED_USER': 'tester',
            'PGSANDBOX_RESTRICTED_PASSWORD': 'tester_pw',
            'PGSANDBOX_DEFAULT_DATABASE': 'template_admin',
        }

        with patch.dict(os.environ, env_vars, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.coordinates() == ServerCoordinates("db.internal", 6543, "require")
            assert config.credentials() == Credentials(
                admin_user="admin",
                admin_password="secret",
                restricted_user="tester",
                restricted_password="tester_pw",
                default_database="template_admin",
            )
            assert config.is_server_configured

    def test_env_file_is_loaded(self, tmp_path):
        # GIVEN: A .env file with comments and blank lines
        (tmp_path / ".env").write_text(
            "# shared test server\n"
            "\n"
            "PGSANDBOX_HOST=files.test\n"
            "PGSANDBOX_PORT = 5440\n"
        )

        with patch.dict(os.environ, {}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.coordinates().host == "files.test"
            assert config.coordinates().port == 5440
            assert config.is_server_configured

    def test_env_specific_file_overrides_base_file(self, tmp_path):
        (tmp_path / ".env").write_text("PGSANDBOX_PORT=5440\n")
        (tmp_path / ".env.ci").write_text("PGSANDBOX_PORT=5441\n")

        with patch.dict(os.environ, {'ENV': 'ci'}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.coordinates().port == 5441

    def test_environment_overrides_env_files(self, tmp_path):
        (tmp_path / ".env").write_text("PGSANDBOX_PORT=5440\n")

        with patch.dict(os.environ, {'PGSANDBOX_PORT': '5999'}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.coordinates().port == 5999

    def test_pool_settings_from_environment(self, tmp_path):
        env_vars = {
            'PGSANDBOX_CONNECT_TIMEOUT': '2.5',
            'PGSANDBOX_ADMIN_POOL_MAX_SIZE': '1',
            'PGSANDBOX_POOL_MAX_SIZE': '20',
            'PGSANDBOX_EXTENSION': 'pg_trgm',
            'PGSANDBOX_EXTENSION_VERSION': '1.6',
        }

        with patch.dict(os.environ, env_vars, clear=True):
            settings = ConfigManager(config_dir=str(tmp_path)).pool_settings()

            assert settings == PoolSettings(2.5, 1, 20, 'pg_trgm', '1.6')


class TestValidation:
    """Test malformed connection parameters raise ConfigurationError"""

    @pytest.mark.parametrize("port", ['abc', '', '5432.5'])
    def test_non_numeric_port(self, tmp_path, port):
        with patch.dict(os.environ, {'PGSANDBOX_PORT': port}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            with pytest.raises(ConfigurationError) as exc_info:
                config.coordinates()

            assert "PGSANDBOX_PORT" in str(exc_info.value)

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_port_out_of_range(self, port):
        with pytest.raises(ConfigurationError) as exc_info:
            ServerCoordinates("localhost", port)

        assert "between 1 and 65535" in str(exc_info.value)

    def test_unknown_sslmode(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ServerCoordinates("localhost", 5432, "sometimes")

        assert "sslmode" in str(exc_info.value)

    def test_empty_host(self):
        with pytest.raises(ConfigurationError):
            ServerCoordinates("", 5432)

    def test_restricted_user_must_differ_from_admin(self):
        with pytest.raises(ConfigurationError):
            Credentials(admin_user="postgres", admin_password="pw", restricted_user="postgres")

    def test_empty_admin_user(self):
        with pytest.raises(ConfigurationError):
            Credentials(admin_user="", admin_password="pw")

    @pytest.mark.parametrize("kwargs", [
        {'connect_timeout': 0},
        {'admin_pool_max_size': 0},
        {'pool_max_size': 0},
        {'extension': ''},
    ])
    def test_invalid_pool_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            PoolSettings(**kwargs)

    def test_invalid_timeout_from_environment(self, tmp_path):
        with patch.dict(os.environ, {'PGSANDBOX_CONNECT_TIMEOUT': 'soon'}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            with pytest.raises(ConfigurationError):
                config.pool_settings()
