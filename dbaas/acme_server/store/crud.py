"""
Descriptor-driven CRUD engine for the Acme store.

One engine serves every registered entity. SQL text is assembled only from
descriptor metadata (quoted table and column names, a fixed operator
table); every caller-supplied value is coerced to its field type and bound
as a parameter.

Read path:
    query(entity, filters, limit, offset, order_by) -> list[Record]

    Filter keys are "field" or "field__op":
        eq, ne, lt, lte, gt, gte   comparison
        in                         list or comma-separated string
        contains, startswith       text fields only (LIKE, ASCII case-insensitive)
        isnull                     true/false

Write path:
    create(entity, payload)        row + "created" event (full snapshot)
    update(entity, key, payload)   row + "updated" event (diff of changed fields)
    delete(entity, key)            row + "deleted" event (last snapshot)

Invariants:
    - Unknown fields or operators fail with ValidationError before any
      connection is acquired
    - The row change and its event commit together or not at all
    - update/delete on a missing key fail with NotFoundError and record nothing
    - Results are ordered; the primary key is always the final tiebreaker
    - A page larger than max_limit is rejected, never clamped

How to change safely:
    - New operators go in _OPERATORS and must bind their values
    - Never format a caller-supplied value into SQL text
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import ConflictError, NotFoundError, StorageError, ValidationError
from ..schema.registry import EntityRegistry
from ..schema.types import EntityDescriptor, FieldDef, FieldKind, Record, quote_identifier
from .connection import ConnectionProvider, transaction
from .event_log import EventKind, EventLog, LifecycleEvent, check_limit

logger = logging.getLogger(__name__)

_COMPARISONS = {
    "eq": "=",
    "ne": "!=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
}
_OPERATORS = set(_COMPARISONS) | {"in", "contains", "startswith", "isnull"}
_RANGE_OPERATORS = {"lt", "lte", "gt", "gte"}
_LIKE_OPERATORS = {"contains", "startswith"}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _column(f: FieldDef, numeric: bool = False) -> str:
    """Column expression; decimals compare numerically for ranges and ordering."""
    name = quote_identifier(f.name)
    if numeric and f.kind == FieldKind.DECIMAL:
        return f"CAST({name} AS REAL)"
    return name


def _range_param(f: FieldDef, value: Any) -> Any:
    if f.kind == FieldKind.DECIMAL:
        return float(value)
    return f.to_storage(value)


def parse_filter_key(descriptor: EntityDescriptor, key: str) -> tuple[FieldDef, str]:
    """Split a filter key into its field and operator.

    Raises:
        ValidationError: If the field or operator is unknown
    """
    f = descriptor.get_field(key)
    if f is not None:
        return f, "eq"

    name, sep, op = key.rpartition("__")
    if not sep:
        raise ValidationError(
            f"Unknown field '{key}' for entity '{descriptor.name}'", field_name=key
        )
    f = descriptor.get_field(name)
    if f is None:
        raise ValidationError(
            f"Unknown field '{name}' for entity '{descriptor.name}'", field_name=name
        )
    if op not in _OPERATORS:
        raise ValidationError(
            f"Unknown filter operator '{op}'. Valid operators: {sorted(_OPERATORS)}",
            field_name=name,
        )
    return f, op


def build_where(
    descriptor: EntityDescriptor,
    filters: Mapping[str, Any],
) -> tuple[str, list[Any]]:
    """Build a parameterized WHERE clause from untyped filters.

    Args:
        descriptor: Entity being queried
        filters: Mapping of filter key to raw value

    Returns:
        Tuple of (" WHERE ..." or "", bound parameters)

    Raises:
        ValidationError: On unknown fields, operators or bad values
    """
    if not isinstance(filters, Mapping):
        raise ValidationError("filters must be a mapping")

    clauses: list[str] = []
    params: list[Any] = []

    for key, raw in filters.items():
        f, op = parse_filter_key(descriptor, key)

        if op == "isnull":
            wanted = FieldDef(name=f.name, kind=FieldKind.BOOLEAN).coerce(raw)
            clauses.append(f"{_column(f)} IS {'' if wanted else 'NOT '}NULL")
            continue

        if op == "in":
            items = raw.split(",") if isinstance(raw, str) else raw
            if not isinstance(items, (list, tuple, set, frozenset)) or not items:
                raise ValidationError(
                    f"Filter '{key}' expects a non-empty list", field_name=f.name
                )
            values = [f.to_storage(f.coerce(item)) for item in items]
            placeholders = ", ".join("?" for _ in values)
            clauses.append(f"{_column(f)} IN ({placeholders})")
            params.extend(values)
            continue

        if op in _LIKE_OPERATORS:
            if f.kind != FieldKind.TEXT:
                raise ValidationError(
                    f"Operator '{op}' only applies to text fields, not '{f.name}'",
                    field_name=f.name,
                )
            text = f.coerce(raw)
            if text is None:
                raise ValidationError(f"Filter '{key}' needs a value", field_name=f.name)
            pattern = _escape_like(text) + "%"
            if op == "contains":
                pattern = "%" + pattern
            clauses.append(f"{_column(f)} LIKE ? ESCAPE '\\'")
            params.append(pattern)
            continue

        if op in _RANGE_OPERATORS:
            if f.kind == FieldKind.BOOLEAN:
                raise ValidationError(
                    f"Operator '{op}' does not apply to boolean field '{f.name}'",
                    field_name=f.name,
                )
            value = f.coerce(raw)
            if value is None:
                raise ValidationError(f"Filter '{key}' needs a value", field_name=f.name)
            clauses.append(f"{_column(f, numeric=True)} {_COMPARISONS[op]} ?")
            params.append(_range_param(f, value))
            continue

        # eq / ne; None means IS [NOT] NULL on nullable fields
        value = f.coerce(raw)
        if value is None:
            clauses.append(f"{_column(f)} IS {'NOT ' if op == 'ne' else ''}NULL")
        else:
            clauses.append(f"{_column(f)} {_COMPARISONS[op]} ?")
            params.append(f.to_storage(value))

    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def build_order(
    descriptor: EntityDescriptor,
    order_by: str | Sequence[str] | None = None,
) -> str:
    """Build the ORDER BY expression list.

    Uses order_by if given, else the descriptor's default order, and always
    ends with the primary key ascending.

    Raises:
        ValidationError: If order_by names an unknown field
    """
    if isinstance(order_by, str):
        items = [item.strip() for item in order_by.split(",") if item.strip()]
    elif order_by:
        items = list(order_by)
    else:
        items = list(descriptor.default_order)

    pk = descriptor.primary_key
    terms: list[str] = []
    for item in items:
        descending = item.startswith("-")
        name = item.lstrip("-")
        f = descriptor.get_field(name)
        if f is None:
            raise ValidationError(
                f"Cannot order by unknown field '{name}' of entity '{descriptor.name}'",
                field_name=name,
            )
        if f.primary_key:
            terms.append(f"{_column(f)} {'DESC' if descending else 'ASC'}")
            return ", ".join(terms)
        terms.append(f"{_column(f, numeric=True)} {'DESC' if descending else 'ASC'}")

    terms.append(f"{_column(pk)} ASC")
    return ", ".join(terms)


class CrudEngine:
    """Generic query/command engine over registered entities.

    Each operation acquires its own connection; each mutation runs in one
    BEGIN IMMEDIATE transaction together with its event append.

    Example:
        >>> engine = CrudEngine(registry, provider, event_log)
        >>> booking = await engine.create("Booking", {"name": "Room A", "cost": 100})
        >>> await engine.update("Booking", booking.key, {"cost": 120})
        >>> await engine.query("Booking", {"cost__gte": "100"})
    """

    def __init__(
        self,
        registry: EntityRegistry,
        provider: ConnectionProvider,
        event_log: EventLog,
        max_limit: int = 1000,
        default_limit: int = 100,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Registry resolving entity names to descriptors
            provider: Connection provider
            event_log: Event log that mutations append to
            max_limit: Hard ceiling on rows per query
            default_limit: Rows returned when no limit is requested
        """
        self.registry = registry
        self.provider = provider
        self.event_log = event_log
        self.max_limit = max_limit
        self.default_limit = default_limit

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def query(
        self,
        entity: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | Sequence[str] | None = None,
    ) -> list[Record]:
        """Query rows of an entity.

        Args:
            entity: Entity name
            filters: Filter key -> raw value (see module docstring)
            limit: Page size, default_limit if None, at most max_limit
            offset: Rows to skip
            order_by: Field names, "-" prefix for descending

        Returns:
            Matching records in a stable order

        Raises:
            ValidationError: Unknown entity/field/operator, bad value or page
            StorageError: If the store fails the query
        """
        descriptor = self.registry.require(entity)
        where, params = build_where(descriptor, filters or {})
        limit = self._check_page(limit, offset)
        order = build_order(descriptor, order_by)

        sql = (
            f"SELECT {self._select_list(descriptor)} "
            f"FROM {quote_identifier(descriptor.table_name)}{where} "
            f"ORDER BY {order} LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])

        with self.provider.acquire() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Query on '{entity}' failed: {e}", operation="query") from e

        return [self._decode(descriptor, row) for row in rows]

    async def count(self, entity: str, filters: Mapping[str, Any] | None = None) -> int:
        """Count rows matching filters."""
        descriptor = self.registry.require(entity)
        where, params = build_where(descriptor, filters or {})
        sql = f"SELECT COUNT(*) FROM {quote_identifier(descriptor.table_name)}{where}"

        with self.provider.acquire() as conn:
            try:
                return conn.execute(sql, params).fetchone()[0]
            except sqlite3.Error as e:
                raise StorageError(f"Count on '{entity}' failed: {e}", operation="count") from e

    async def get(self, entity: str, key: Any) -> Record:
        """Get one row by primary key.

        Raises:
            NotFoundError: If no row has this key
        """
        descriptor = self.registry.require(entity)
        key = descriptor.coerce_key(key)

        with self.provider.acquire() as conn:
            try:
                record = self._fetch(conn, descriptor, key)
            except sqlite3.Error as e:
                raise StorageError(f"Get on '{entity}' failed: {e}", operation="get") from e

        if record is None:
            raise self._not_found(descriptor, key)
        return record

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def create(
        self,
        entity: str,
        payload: Mapping[str, Any],
        actor: str | None = None,
    ) -> Record:
        """Insert a row and record a "created" event.

        Args:
            entity: Entity name
            payload: Field values; auto-generated keys must be omitted
            actor: Who performs the mutation

        Returns:
            The created record, including its assigned key

        Raises:
            ValidationError: Unknown/missing fields or bad values
            StorageError: If the insert or event append fails
        """
        descriptor = self._writable(entity)
        values = self._prepare_create(descriptor, payload)

        columns = list(values)
        sql = (
            f"INSERT INTO {quote_identifier(descriptor.table_name)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        params = [descriptor.get_field(c).to_storage(values[c]) for c in columns]  # type: ignore[union-attr]
        pk = descriptor.primary_key

        with self.provider.acquire() as conn:
            try:
                with transaction(conn):
                    cursor = conn.execute(sql, params)
                    key = cursor.lastrowid if pk.auto else values[pk.name]
                    record = self._fetch(conn, descriptor, key)
                    if record is None:
                        raise StorageError(
                            f"Inserted '{entity}' row {key} could not be read back",
                            operation="create",
                        )
                    self.event_log.append(
                        conn,
                        LifecycleEvent(
                            entity_type=descriptor.name,
                            entity_key=descriptor.key_text(record.key),
                            kind=EventKind.CREATED,
                            data=record.to_dict(descriptor),
                            actor=actor,
                        ),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Create on '{entity}' failed: {e}", operation="create") from e

        logger.debug(
            "Created record",
            extra={"entity": descriptor.name, "key": record.key, "actor": actor},
        )
        return record

    async def update(
        self,
        entity: str,
        key: Any,
        payload: Mapping[str, Any],
        actor: str | None = None,
    ) -> Record:
        """Change the supplied fields of a row and record an "updated" event.

        If the entity declares a version field, the payload must carry the
        version the caller last read; the stored version is incremented.

        Args:
            entity: Entity name
            key: Primary-key value of the row
            payload: Fields to change
            actor: Who performs the mutation

        Returns:
            The record after the update

        Raises:
            ValidationError: Unknown fields, bad values, key change, missing version
            NotFoundError: If no row has this key
            ConflictError: If the supplied version is stale
            StorageError: If the update or event append fails
        """
        descriptor = self._writable(entity)
        key = descriptor.coerce_key(key)
        changes, expected_version = self._prepare_update(descriptor, key, payload)
        table = quote_identifier(descriptor.table_name)
        pk = descriptor.primary_key

        with self.provider.acquire() as conn:
            try:
                with transaction(conn):
                    current = self._fetch(conn, descriptor, key)
                    if current is None:
                        raise self._not_found(descriptor, key)
                    self._check_version(descriptor, current, expected_version)

                    diff: dict[str, dict[str, Any]] = {}
                    assignments: dict[str, Any] = {}
                    for name, new in changes.items():
                        old = current.values[name]
                        if old != new:
                            f = descriptor.get_field(name)
                            diff[name] = {"old": f.to_json(old), "new": f.to_json(new)}  # type: ignore[union-attr]
                            assignments[name] = new

                    if descriptor.version_field:
                        vf = descriptor.version_field
                        old_version = current.values[vf]
                        assignments[vf] = old_version + 1
                        diff[vf] = {"old": old_version, "new": old_version + 1}

                    if assignments:
                        set_sql = ", ".join(f"{quote_identifier(n)} = ?" for n in assignments)
                        params = [
                            descriptor.get_field(n).to_storage(v)  # type: ignore[union-attr]
                            for n, v in assignments.items()
                        ]
                        params.append(pk.to_storage(key))
                        conn.execute(
                            f"UPDATE {table} SET {set_sql} WHERE {quote_identifier(pk.name)} = ?",
                            params,
                        )

                    updated = self._fetch(conn, descriptor, key)
                    self.event_log.append(
                        conn,
                        LifecycleEvent(
                            entity_type=descriptor.name,
                            entity_key=descriptor.key_text(key),
                            kind=EventKind.UPDATED,
                            data=diff,
                            actor=actor,
                        ),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Update on '{entity}' failed: {e}", operation="update") from e

        logger.debug(
            "Updated record",
            extra={"entity": descriptor.name, "key": key, "fields": sorted(diff), "actor": actor},
        )
        return updated  # type: ignore[return-value]

    async def delete(
        self,
        entity: str,
        key: Any,
        actor: str | None = None,
        expected_version: Any = None,
    ) -> Record:
        """Remove a row and record a "deleted" event with its last snapshot.

        Args:
            entity: Entity name
            key: Primary-key value of the row
            actor: Who performs the mutation
            expected_version: Optional version check (versioned entities only)

        Returns:
            The record as it was before deletion

        Raises:
            NotFoundError: If no row has this key
            ConflictError: If expected_version is stale
            StorageError: If the delete or event append fails
        """
        descriptor = self._writable(entity)
        key = descriptor.coerce_key(key)
        if expected_version is not None:
            expected_version = self._coerce_version(descriptor, expected_version)
        pk = descriptor.primary_key

        with self.provider.acquire() as conn:
            try:
                with transaction(conn):
                    current = self._fetch(conn, descriptor, key)
                    if current is None:
                        raise self._not_found(descriptor, key)
                    self._check_version(descriptor, current, expected_version)

                    conn.execute(
                        f"DELETE FROM {quote_identifier(descriptor.table_name)} "
                        f"WHERE {quote_identifier(pk.name)} = ?",
                        (pk.to_storage(key),),
                    )
                    self.event_log.append(
                        conn,
                        LifecycleEvent(
                            entity_type=descriptor.name,
                            entity_key=descriptor.key_text(key),
                            kind=EventKind.DELETED,
                            data=current.to_dict(descriptor),
                            actor=actor,
                        ),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Delete on '{entity}' failed: {e}", operation="delete") from e

        logger.debug(
            "Deleted record",
            extra={"entity": descriptor.name, "key": key, "actor": actor},
        )
        return current

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _writable(self, entity: str) -> EntityDescriptor:
        descriptor = self.registry.require(entity)
        if descriptor.read_only:
            raise ValidationError(f"Entity '{entity}' is read-only")
        return descriptor

    def _check_page(self, limit: int | None, offset: int) -> int:
        limit = check_limit(self.default_limit if limit is None else limit, self.max_limit)
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError(
                f"offset must be a non-negative integer, got {offset!r}", field_name="offset"
            )
        return limit

    def _prepare_create(
        self,
        descriptor: EntityDescriptor,
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Validate a create payload into typed column values."""
        if not isinstance(payload, Mapping):
            raise ValidationError("payload must be a mapping")

        errors: list[str] = []
        unknown = set(payload) - set(descriptor.get_field_names())
        if unknown:
            errors.append(f"Unknown fields: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for f in descriptor.fields:
            supplied = f.name in payload
            if f.auto:
                if supplied and payload[f.name] is not None:
                    errors.append(f"Field '{f.name}' is assigned by the store")
                continue
            if f.name == descriptor.version_field:
                if supplied:
                    errors.append(f"Field '{f.name}' is managed by the store")
                values[f.name] = 1
                continue
            if supplied:
                try:
                    values[f.name] = f.coerce(payload[f.name])
                except ValidationError as e:
                    errors.append(e.message)
            elif f.default is not None:
                values[f.name] = f.default
            elif f.nullable:
                values[f.name] = None
            else:
                errors.append(f"Field '{f.name}' is required")

        if errors:
            raise ValidationError(
                f"Invalid payload for entity '{descriptor.name}'",
                errors=errors,
            )
        return values

    def _prepare_update(
        self,
        descriptor: EntityDescriptor,
        key: Any,
        payload: Mapping[str, Any],
    ) -> tuple[dict[str, Any], int | None]:
        """Validate an update payload into typed changes and the expected version."""
        if not isinstance(payload, Mapping):
            raise ValidationError("payload must be a mapping")

        errors: list[str] = []
        unknown = set(payload) - set(descriptor.get_field_names())
        if unknown:
            errors.append(f"Unknown fields: {sorted(unknown)}")

        pk = descriptor.primary_key
        changes: dict[str, Any] = {}
        expected_version: int | None = None

        for name, raw in payload.items():
            f = descriptor.get_field(name)
            if f is None:
                continue
            try:
                value = f.coerce(raw)
            except ValidationError as e:
                errors.append(e.message)
                continue
            if f.primary_key:
                if value != key:
                    errors.append(f"Primary key '{pk.name}' cannot be changed")
                continue
            if name == descriptor.version_field:
                expected_version = value
                continue
            changes[name] = value

        if descriptor.version_field and expected_version is None and not errors:
            errors.append(f"Field '{descriptor.version_field}' is required to update")

        if errors:
            raise ValidationError(
                f"Invalid payload for entity '{descriptor.name}'",
                errors=errors,
            )
        return changes, expected_version

    def _coerce_version(self, descriptor: EntityDescriptor, value: Any) -> int:
        if not descriptor.version_field:
            raise ValidationError(f"Entity '{descriptor.name}' is not versioned")
        return descriptor.get_field(descriptor.version_field).coerce(value)  # type: ignore[union-attr]

    def _check_version(
        self,
        descriptor: EntityDescriptor,
        current: Record,
        expected_version: int | None,
    ) -> None:
        if not descriptor.version_field or expected_version is None:
            return
        actual = current.values[descriptor.version_field]
        if actual != expected_version:
            raise ConflictError(
                f"{descriptor.name} {current.key} is at version {actual}, "
                f"not {expected_version}",
                entity=descriptor.name,
                key=current.key,
                expected_version=expected_version,
                actual_version=actual,
            )

    def _select_list(self, descriptor: EntityDescriptor) -> str:
        return ", ".join(quote_identifier(f.name) for f in descriptor.fields)

    def _fetch(
        self,
        conn: sqlite3.Connection,
        descriptor: EntityDescriptor,
        key: Any,
    ) -> Record | None:
        pk = descriptor.primary_key
        row = conn.execute(
            f"SELECT {self._select_list(descriptor)} "
            f"FROM {quote_identifier(descriptor.table_name)} "
            f"WHERE {quote_identifier(pk.name)} = ?",
            (pk.to_storage(key),),
        ).fetchone()
        return self._decode(descriptor, row) if row is not None else None

    def _decode(self, descriptor: EntityDescriptor, row: sqlite3.Row) -> Record:
        values = {f.name: f.from_storage(row[f.name]) for f in descriptor.fields}
        return Record(
            entity=descriptor.name,
            key=values[descriptor.primary_key.name],
            values=values,
        )

    def _not_found(self, descriptor: EntityDescriptor, key: Any) -> NotFoundError:
        return NotFoundError(
            f"{descriptor.name} with {descriptor.primary_key.name}={key} not found",
            entity=descriptor.name,
            key=key,
        )
