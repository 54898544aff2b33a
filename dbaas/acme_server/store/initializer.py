"""
Schema initializer for the Acme SQLite store.

Creates one table per registered entity descriptor, plus the indexes the
descriptor asks for, and verifies that existing tables still match.

Invariants:
    - Only CREATE ... IF NOT EXISTS statements are issued; nothing is
      dropped or altered
    - Running ensure_schema N times yields the same schema as running it once
    - A table whose columns differ from its descriptor is reported as
      SchemaError, never repaired
    - Initialization of one store happens once per process, through the
      shared gate returned by schema_gate()

How to change safely:
    - New entities only need a new descriptor
    - Changing a column of an existing entity needs a manual migration
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from ..errors import SchemaError
from ..schema.types import EntityDescriptor, FieldDef, quote_identifier
from .connection import ConnectionProvider, transaction

logger = logging.getLogger(__name__)


def column_sql(f: FieldDef) -> str:
    """Column definition for one field."""
    parts = [quote_identifier(f.name), f.kind.sql_type]
    if not f.nullable:
        parts.append("NOT NULL")
    if f.primary_key:
        parts.append("PRIMARY KEY")
        if f.auto:
            parts.append("AUTOINCREMENT")
    return " ".join(parts)


def create_table_sql(descriptor: EntityDescriptor) -> str:
    """CREATE TABLE IF NOT EXISTS statement for a descriptor."""
    columns = ",\n    ".join(column_sql(f) for f in descriptor.fields)
    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(descriptor.table_name)} (\n"
        f"    {columns}\n)"
    )


def create_index_sql(descriptor: EntityDescriptor) -> list[str]:
    """CREATE INDEX IF NOT EXISTS statements for indexed fields."""
    table = descriptor.table_name
    return [
        f"CREATE INDEX IF NOT EXISTS {quote_identifier(f'idx_{table}_{f.name}')} "
        f"ON {quote_identifier(table)}({quote_identifier(f.name)})"
        for f in descriptor.fields
        if f.indexed and not f.primary_key
    ]


def table_columns(conn: sqlite3.Connection, table: str) -> list[dict[str, Any]]:
    """Live column layout of a table (empty if the table does not exist)."""
    cursor = conn.execute(f"PRAGMA table_info({quote_identifier(table)})")
    return [
        {
            "name": row["name"],
            "type": (row["type"] or "").upper(),
            "notnull": bool(row["notnull"]),
            "pk": bool(row["pk"]),
        }
        for row in cursor.fetchall()
    ]


def detect_drift(conn: sqlite3.Connection, descriptor: EntityDescriptor) -> list[str]:
    """Compare the live table with its descriptor.

    Returns:
        One message per mismatch (empty if the table matches)
    """
    live = {c["name"]: c for c in table_columns(conn, descriptor.table_name)}
    if not live:
        return [f"table '{descriptor.table_name}' does not exist"]

    problems: list[str] = []
    declared = set(descriptor.get_field_names())

    for f in descriptor.fields:
        column = live.get(f.name)
        if column is None:
            problems.append(f"column '{f.name}' is missing")
            continue
        if column["type"] != f.kind.sql_type:
            problems.append(
                f"column '{f.name}' has type {column['type'] or 'NONE'}, "
                f"expected {f.kind.sql_type}"
            )
        if column["pk"] != f.primary_key:
            problems.append(
                f"column '{f.name}' primary key is {column['pk']}, expected {f.primary_key}"
            )
        if column["notnull"] != (not f.nullable):
            problems.append(
                f"column '{f.name}' NOT NULL is {column['notnull']}, expected {not f.nullable}"
            )

    for name in sorted(set(live) - declared):
        problems.append(f"column '{name}' is not declared")

    return problems


class SchemaInitializer:
    """Creates and verifies the tables of registered descriptors.

    Example:
        >>> initializer = SchemaInitializer(provider)
        >>> initializer.initialize([CRUD_EVENT, BOOKING])
    """

    def __init__(self, provider: ConnectionProvider) -> None:
        self.provider = provider

    def ensure_schema(
        self,
        conn: sqlite3.Connection,
        descriptors: Iterable[EntityDescriptor],
    ) -> None:
        """Ensure every descriptor's table exists and matches.

        All statements run in one transaction; on any failure nothing
        is created.

        Args:
            conn: Open connection
            descriptors: Descriptors to materialize

        Raises:
            SchemaError: If a statement fails or a table has drifted
        """
        descriptors = list(descriptors)
        try:
            with transaction(conn):
                for descriptor in descriptors:
                    conn.execute(create_table_sql(descriptor))

                    problems = detect_drift(conn, descriptor)
                    if problems:
                        raise SchemaError(
                            f"Table '{descriptor.table_name}' does not match "
                            f"entity '{descriptor.name}'",
                            table=descriptor.table_name,
                            problems=problems,
                        )

                    for statement in create_index_sql(descriptor):
                        conn.execute(statement)
        except sqlite3.Error as e:
            raise SchemaError(f"Schema initialization failed: {e}") from e

        logger.info(
            "Schema ensured",
            extra={"tables": [d.table_name for d in descriptors]},
        )

    def initialize(self, descriptors: Iterable[EntityDescriptor]) -> None:
        """Acquire a connection and ensure the schema."""
        with self.provider.acquire() as conn:
            self.ensure_schema(conn, descriptors)

    def initialize_once(self, descriptors: Iterable[EntityDescriptor]) -> bool:
        """Initialize through the process-wide gate for this store.

        Returns:
            True if this call ran the initialization, False if an earlier
            call in this process already completed it
        """
        descriptors = tuple(descriptors)
        ran = False

        def work() -> None:
            nonlocal ran
            self.initialize(descriptors)
            ran = True

        schema_gate(self.provider.db_path, descriptors).run_once(work)
        return ran


class StartupGate:
    """One-time execution gate for process startup work.

    The first run_once() call executes the function under a lock; later
    calls return its result without running anything. If the function
    raises, the gate stays closed and the error propagates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = False
        self._result: Any = None

    @property
    def done(self) -> bool:
        """Whether the gated work has completed successfully."""
        return self._done

    def run_once(self, fn: Callable[[], Any]) -> Any:
        """Run fn exactly once per gate."""
        if self._done:
            return self._result
        with self._lock:
            if not self._done:
                self._result = fn()
                self._done = True
        return self._result


_schema_gates: dict[tuple[str, tuple[EntityDescriptor, ...]], StartupGate] = {}
_schema_gates_lock = threading.Lock()


def schema_gate(db_path: Path, descriptors: Iterable[EntityDescriptor]) -> StartupGate:
    """Process-wide gate for one store and one set of descriptors.

    Every bootstrap path in the process shares these gates, so a given
    schema is initialized at most once however many apps or contexts open
    the same database. A different descriptor set gets its own gate and is
    checked again.
    """
    key = (str(Path(db_path).resolve()), tuple(descriptors))
    with _schema_gates_lock:
        gate = _schema_gates.get(key)
        if gate is None:
            gate = _schema_gates[key] = StartupGate()
    return gate
