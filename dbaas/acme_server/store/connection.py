"""
Connection provider for the Acme SQLite store.

Every operation acquires its own connection and closes it when done.
Nothing is pooled across operations, so concurrent callers never share
a connection and a failed operation cannot leak state into the next one.

Invariants:
    - A connection is closed on every exit path of acquire()
    - Connections run in autocommit mode; writes use explicit transactions
    - The database file and its directory are created lazily on first use

How to change safely:
    - Keep PRAGMA settings identical for every connection
    - Never hand a connection to another operation
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import DEFAULT_CONNECTION_STRING, Dialect, StorageConfig
from ..errors import ConnectionError

logger = logging.getLogger(__name__)

_DATA_SOURCE_KEYS = ("data source", "datasource", "filename")


def resolve_database_path(connection_string: str | None) -> Path:
    """Resolve a connection string to the SQLite database file path.

    Accepted forms:
        bookings.sqlite                     plain path
        sqlite:///relative/bookings.sqlite  URL (four slashes for absolute)
        Data Source=bookings.sqlite;Cache=Shared

    Args:
        connection_string: Connection string, falls back to the default store

    Returns:
        Path to the database file
    """
    text = (connection_string or "").strip() or DEFAULT_CONNECTION_STRING

    if text.startswith("sqlite:///"):
        return Path(text[len("sqlite:///"):])

    if "=" in text:
        for part in text.split(";"):
            key, _, value = part.partition("=")
            if key.strip().lower() in _DATA_SOURCE_KEYS and value.strip():
                return Path(value.strip())
        raise ValueError("Connection string has no 'Data Source' entry")

    return Path(text)


class ConnectionProvider:
    """Factory for per-operation SQLite connections.

    Stateless apart from its configuration; safe for concurrent callers.

    Example:
        >>> provider = ConnectionProvider("bookings.sqlite")
        >>> with provider.acquire() as conn:
        ...     conn.execute("SELECT 1")
    """

    def __init__(
        self,
        connection_string: str | None = None,
        dialect: Dialect = Dialect.SQLITE,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the provider.

        Args:
            connection_string: Store location (see resolve_database_path)
            dialect: SQL dialect, only SQLite is supported
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL mode

        Raises:
            ValueError: If the dialect or connection string is unsupported
        """
        if dialect != Dialect.SQLITE:
            raise ValueError(f"Unsupported dialect: {dialect.value}")

        self.db_path = resolve_database_path(connection_string)
        if str(self.db_path) == ":memory:":
            raise ValueError(
                "In-memory stores are not supported: each operation opens its own connection"
            )
        self.dialect = dialect
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode

    @classmethod
    def from_config(cls, config: StorageConfig) -> ConnectionProvider:
        """Create a provider from storage configuration."""
        return cls(
            connection_string=config.connection_string,
            dialect=config.dialect,
            busy_timeout_ms=config.busy_timeout_ms,
            wal_mode=config.wal_mode,
        )

    @contextmanager
    def acquire(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for one operation.

        Yields:
            SQLite connection (closed when the block exits)

        Raises:
            ConnectionError: If the store cannot be opened
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (OSError, sqlite3.Error) as e:
            raise ConnectionError(
                f"Cannot open store at {self.db_path}: {e}",
                address=str(self.db_path),
            ) from e

        conn.row_factory = sqlite3.Row

        try:
            try:
                conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
                conn.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                raise ConnectionError(
                    f"Cannot configure store at {self.db_path}: {e}",
                    address=str(self.db_path),
                ) from e

            yield conn
        finally:
            conn.close()

    def ping(self) -> bool:
        """Check the store answers a trivial query."""
        try:
            with self.acquire() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except ConnectionError:
            logger.warning("Store ping failed", exc_info=True)
            return False

    def describe(self) -> dict[str, str]:
        """Connection details safe to log or report."""
        return {"dialect": self.dialect.value, "database": str(self.db_path)}


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside BEGIN IMMEDIATE ... COMMIT.

    Any exception, including task cancellation, rolls the transaction
    back before it propagates.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
