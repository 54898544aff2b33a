"""
Unit tests for environment configuration.
"""

import pytest

from dbaas.acme_server.config import (
    DEFAULT_CONNECTION_STRING,
    Dialect,
    QueryConfig,
    ServerConfig,
    StorageConfig,
)

ENV_VARS = (
    "ACME_CONNECTION_STRING",
    "ConnectionStrings__DefaultConnection",
    "ACME_DIALECT",
    "ACME_MAX_LIMIT",
    "ACME_DEFAULT_LIMIT",
    "ACME_DESCRIPTORS_FILE",
    "ACME_DEBUG",
    "SQLITE_BUSY_TIMEOUT_MS",
    "SQLITE_WAL_MODE",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestStorageConfig:
    """Tests for StorageConfig.from_env."""

    def test_defaults(self):
        config = StorageConfig.from_env()

        assert config.connection_string == DEFAULT_CONNECTION_STRING
        assert config.dialect == Dialect.SQLITE
        assert config.busy_timeout_ms == 5000
        assert config.wal_mode is True

    def test_default_connection_name(self, monkeypatch):
        monkeypatch.setenv("ConnectionStrings__DefaultConnection", "Data Source=hosted.db")

        assert StorageConfig.from_env().connection_string == "Data Source=hosted.db"

    def test_explicit_variable_wins(self, monkeypatch):
        monkeypatch.setenv("ConnectionStrings__DefaultConnection", "Data Source=hosted.db")
        monkeypatch.setenv("ACME_CONNECTION_STRING", "local.sqlite")

        assert StorageConfig.from_env().connection_string == "local.sqlite"

    def test_unsupported_dialect(self, monkeypatch):
        monkeypatch.setenv("ACME_DIALECT", "postgres")

        with pytest.raises(ValueError, match="Invalid dialect"):
            StorageConfig.from_env()

    def test_sqlite_tuning(self, monkeypatch):
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = StorageConfig.from_env()

        assert config.busy_timeout_ms == 250
        assert config.wal_mode is False


class TestServerConfig:
    """Tests for ServerConfig.from_env and validate."""

    def test_defaults(self):
        config = ServerConfig.from_env()

        assert config.query == QueryConfig(max_limit=1000, default_limit=100)
        assert config.descriptors_file is None
        assert config.debug is False
        assert config.observability.log_format == "json"

    def test_max_limit_cannot_exceed_ceiling(self, monkeypatch):
        monkeypatch.setenv("ACME_MAX_LIMIT", "5000")

        with pytest.raises(ValueError, match="cannot exceed 1000"):
            ServerConfig.from_env()

    def test_lower_max_limit_allowed(self, monkeypatch):
        monkeypatch.setenv("ACME_MAX_LIMIT", "200")
        monkeypatch.setenv("ACME_DEFAULT_LIMIT", "50")

        config = ServerConfig.from_env()

        assert config.query.max_limit == 200
        assert config.query.default_limit == 50

    def test_default_limit_within_max(self, monkeypatch):
        monkeypatch.setenv("ACME_MAX_LIMIT", "10")

        with pytest.raises(ValueError, match="ACME_DEFAULT_LIMIT"):
            ServerConfig.from_env()

    def test_missing_descriptors_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ACME_DESCRIPTORS_FILE", str(tmp_path / "missing.yaml"))

        with pytest.raises(ValueError, match="Descriptors file not found"):
            ServerConfig.from_env()

    def test_empty_connection_string(self):
        config = ServerConfig(storage=StorageConfig(connection_string=""))

        with pytest.raises(ValueError, match="cannot be empty"):
            config.validate()

    def test_malformed_connection_string(self):
        config = ServerConfig(storage=StorageConfig(connection_string="Server=x;Port=1"))

        with pytest.raises(ValueError, match="Invalid connection string"):
            config.validate()

    def test_in_memory_store_rejected(self):
        config = ServerConfig(storage=StorageConfig(connection_string="Data Source=:memory:"))

        with pytest.raises(ValueError, match="In-memory stores are not supported"):
            config.validate()
