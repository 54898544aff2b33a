"""
Lifecycle event log for the Acme store.

Every create/update/delete performed by the CRUD engine is recorded here
as an immutable event, in the same transaction as the row change.

Invariants:
    - Events are only ever inserted; no UPDATE or DELETE touches crud_events
    - Events of one (entity_type, entity_key) are totally ordered by
      (ts_ms, id); ts_ms never decreases for a key, so this order is also
      insertion order
    - created/deleted events carry a full snapshot, updated events carry
      a {field: {"old": ..., "new": ...}} diff

Table schema (from the built-in CrudEvent descriptor):
    crud_events:
        - id INTEGER PRIMARY KEY AUTOINCREMENT (sequence)
        - entity_type TEXT
        - entity_key TEXT
        - kind TEXT (created, updated, deleted)
        - ts_ms INTEGER (Unix ms)
        - actor TEXT NULL
        - data_json TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from ..errors import StorageError, ValidationError
from ..schema.builtin import EVENTS_TABLE
from ..schema.types import canonical_decimal
from .connection import ConnectionProvider

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Kinds of lifecycle events."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class LifecycleEvent:
    """One recorded mutation.

    Attributes:
        entity_type: Entity name
        entity_key: Primary-key value as text
        kind: Created, updated or deleted
        data: Snapshot (created/deleted) or field diff (updated)
        actor: Who performed the mutation, if known
        ts_ms: Event timestamp (Unix ms), assigned on append
        seq: Monotonic sequence number, assigned on append
    """

    entity_type: str
    entity_key: str
    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)
    actor: str | None = None
    ts_ms: int = 0
    seq: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON representation used by reports and the HTTP layer."""
        return {
            "seq": self.seq,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "kind": self.kind.value,
            "ts_ms": self.ts_ms,
            "actor": self.actor,
            "data": self.data,
        }


def _row_to_event(row: sqlite3.Row) -> LifecycleEvent:
    return LifecycleEvent(
        entity_type=row["entity_type"],
        entity_key=row["entity_key"],
        kind=EventKind(row["kind"]),
        data=json.loads(row["data_json"]),
        actor=row["actor"],
        ts_ms=row["ts_ms"],
        seq=row["id"],
    )


def _key_text(key: Any) -> str:
    # Same text EntityDescriptor.key_text writes for typed keys.
    if isinstance(key, bool):
        return str(int(key))
    if isinstance(key, Decimal):
        return canonical_decimal(key)
    return str(key)


def check_limit(limit: Any, max_limit: int) -> int:
    """Validate a requested page size against a ceiling.

    Raises:
        ValidationError: If limit is not an integer in 1..max_limit
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"limit must be an integer, got {limit!r}", field_name="limit")
    if limit < 1 or limit > max_limit:
        raise ValidationError(
            f"limit must be between 1 and {max_limit}, got {limit}",
            field_name="limit",
        )
    return limit


class EventLog:
    """Append-only store of lifecycle events.

    append() runs on the caller's connection so it joins the caller's
    transaction. Queries acquire their own connection.

    Example:
        >>> log = EventLog(provider)
        >>> events = await log.query_by_entity("Booking", 1)
        >>> [e.kind.value for e in events]
        ['created', 'updated']
    """

    def __init__(self, provider: ConnectionProvider, max_limit: int = 1000) -> None:
        """Initialize the event log.

        Args:
            provider: Connection provider for queries
            max_limit: Largest page query_recent/query_by_actor may return
        """
        self.provider = provider
        self.max_limit = max_limit

    def append(self, conn: sqlite3.Connection, event: LifecycleEvent) -> LifecycleEvent:
        """Insert an event inside the caller's open transaction.

        Args:
            conn: Connection with an open transaction
            event: Event to record (ts_ms and seq are assigned here)

        Returns:
            The stored event with ts_ms and seq set

        Raises:
            StorageError: If the insert fails
        """
        now = event.ts_ms or int(time.time() * 1000)
        try:
            cursor = conn.execute(
                f"SELECT MAX(ts_ms) FROM {EVENTS_TABLE} WHERE entity_type = ? AND entity_key = ?",
                (event.entity_type, event.entity_key),
            )
            last = cursor.fetchone()[0]
            ts_ms = max(now, last) if last is not None else now

            cursor = conn.execute(
                f"""
                INSERT INTO {EVENTS_TABLE} (entity_type, entity_key, kind, ts_ms, actor, data_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.entity_type,
                    event.entity_key,
                    event.kind.value,
                    ts_ms,
                    event.actor,
                    json.dumps(event.data, sort_keys=True),
                ),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append event: {e}", operation="append_event") from e

        stored = replace(event, ts_ms=ts_ms, seq=cursor.lastrowid)
        logger.debug(
            "Appended event",
            extra={
                "entity_type": stored.entity_type,
                "entity_key": stored.entity_key,
                "kind": stored.kind.value,
                "seq": stored.seq,
            },
        )
        return stored

    def check_limit(self, limit: int) -> int:
        """Validate a requested page size against this log's ceiling."""
        return check_limit(limit, self.max_limit)

    async def query_by_entity(self, entity_type: str, entity_key: Any) -> list[LifecycleEvent]:
        """All events of one entity row, oldest first.

        Args:
            entity_type: Entity name
            entity_key: Typed primary-key value or its canonical text

        Returns:
            Events ordered by (ts_ms, seq) ascending; empty if none
        """
        return self._select(
            f"""
            SELECT * FROM {EVENTS_TABLE}
            WHERE entity_type = ? AND entity_key = ?
            ORDER BY ts_ms ASC, id ASC
            """,
            (entity_type, _key_text(entity_key)),
        )

    async def query_recent(self, limit: int) -> list[LifecycleEvent]:
        """Most recent events across all entities, newest first.

        Raises:
            ValidationError: If limit exceeds the configured maximum
        """
        self.check_limit(limit)
        return self._select(
            f"SELECT * FROM {EVENTS_TABLE} ORDER BY ts_ms DESC, id DESC LIMIT ?",
            (limit,),
        )

    async def query_by_actor(self, actor: str, limit: int) -> list[LifecycleEvent]:
        """Most recent events performed by one actor, newest first.

        Raises:
            ValidationError: If limit exceeds the configured maximum
        """
        self.check_limit(limit)
        return self._select(
            f"""
            SELECT * FROM {EVENTS_TABLE}
            WHERE actor = ?
            ORDER BY ts_ms DESC, id DESC
            LIMIT ?
            """,
            (actor, limit),
        )

    async def count_by_entity(self) -> dict[str, dict[str, int]]:
        """Event counts per entity type and kind."""
        counts: dict[str, dict[str, int]] = {}
        with self.provider.acquire() as conn:
            try:
                cursor = conn.execute(
                    f"""
                    SELECT entity_type, kind, COUNT(*) AS n FROM {EVENTS_TABLE}
                    GROUP BY entity_type, kind
                    """
                )
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to count events: {e}", operation="count_events") from e

        for row in rows:
            counts.setdefault(row["entity_type"], {})[row["kind"]] = row["n"]
        return counts

    def _select(self, sql: str, params: tuple[Any, ...]) -> list[LifecycleEvent]:
        with self.provider.acquire() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to query events: {e}", operation="query_events") from e
        return [_row_to_event(row) for row in rows]
