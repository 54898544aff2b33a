"""
Configuration management for Acme Server.

All configuration is done via environment variables. This module provides
typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The connection string falls back to a local bookings.sqlite file
    - Only the SQLite dialect is supported
    - The page size ceiling is a hard limit, never a default

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never log the raw connection string if it may carry credentials
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_STRING = "bookings.sqlite"
MAX_LIMIT_CEILING = 1000


class Dialect(Enum):
    """Supported SQL dialects."""

    SQLITE = "sqlite"

    @classmethod
    def from_str(cls, value: str) -> Dialect:
        """Convert a dialect identifier to Dialect.

        Raises:
            ValueError: If the dialect is not supported
        """
        for dialect in cls:
            if dialect.value == value.lower():
                return dialect
        valid = [d.value for d in cls]
        raise ValueError(f"Invalid dialect '{value}'. Valid dialects: {valid}")


@dataclass(frozen=True)
class StorageConfig:
    """Store connection configuration.

    Attributes:
        connection_string: SQLite path, sqlite:/// URL or "Data Source=" string
        dialect: SQL dialect identifier
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL journal mode enabled
    """

    connection_string: str = DEFAULT_CONNECTION_STRING
    dialect: Dialect = Dialect.SQLITE
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        ACME_CONNECTION_STRING wins over ConnectionStrings__DefaultConnection,
        which is the name the hosting environment uses for the default store.
        """
        connection_string = (
            os.getenv("ACME_CONNECTION_STRING")
            or os.getenv("ConnectionStrings__DefaultConnection")
            or DEFAULT_CONNECTION_STRING
        )
        return cls(
            connection_string=connection_string,
            dialect=Dialect.from_str(os.getenv("ACME_DIALECT", "sqlite")),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class QueryConfig:
    """Query and reporting limits.

    Attributes:
        max_limit: Maximum rows a single query or report may return
        default_limit: Rows returned when a query does not ask for a limit
    """

    max_limit: int = MAX_LIMIT_CEILING
    default_limit: int = 100

    @classmethod
    def from_env(cls) -> QueryConfig:
        """Load configuration from environment variables."""
        return cls(
            max_limit=int(os.getenv("ACME_MAX_LIMIT", str(MAX_LIMIT_CEILING))),
            default_limit=int(os.getenv("ACME_DEFAULT_LIMIT", "100")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Store connection configuration
        query: Query limits
        observability: Logging configuration
        descriptors_file: Optional YAML/JSON file with extra entity descriptors
        debug: Debug mode (verbose error bodies)
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    descriptors_file: str | None = None
    debug: bool = False

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            query=QueryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
            descriptors_file=os.getenv("ACME_DESCRIPTORS_FILE") or None,
            debug=os.getenv("ACME_DEBUG", "false").lower() == "true",
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        from .store.connection import resolve_database_path

        if not self.storage.connection_string:
            raise ValueError("Connection string cannot be empty")
        try:
            database = resolve_database_path(self.storage.connection_string)
        except ValueError as e:
            raise ValueError(f"Invalid connection string: {e}") from e
        if str(database) == ":memory:":
            raise ValueError("In-memory stores are not supported; use a database file")

        if self.query.max_limit < 1:
            raise ValueError(f"ACME_MAX_LIMIT must be positive, got {self.query.max_limit}")
        if self.query.max_limit > MAX_LIMIT_CEILING:
            raise ValueError(
                f"ACME_MAX_LIMIT cannot exceed {MAX_LIMIT_CEILING}, got {self.query.max_limit}"
            )
        if not 1 <= self.query.default_limit <= self.query.max_limit:
            raise ValueError(
                f"ACME_DEFAULT_LIMIT must be between 1 and {self.query.max_limit}, "
                f"got {self.query.default_limit}"
            )

        if self.descriptors_file and not os.path.exists(self.descriptors_file):
            raise ValueError(f"Descriptors file not found: {self.descriptors_file}")

    def log_config(self) -> None:
        """Log configuration (connection string reduced to its target)."""
        from .store.connection import resolve_database_path

        logger.info(
            "Server configuration loaded",
            extra={
                "dialect": self.storage.dialect.value,
                "database": str(resolve_database_path(self.storage.connection_string)),
                "wal_mode": self.storage.wal_mode,
                "max_limit": self.query.max_limit,
                "descriptors_file": self.descriptors_file,
                "debug": self.debug,
                "log_level": self.observability.log_level,
            },
        )
