"""
Unit tests for the lifecycle event log.

Tests cover:
- Appending inside a caller transaction
- Per-key ordering and non-decreasing timestamps
- Recent and per-actor queries with page limits
- Storage failures
"""

import os
import tempfile

import pytest

from dbaas.acme_server.errors import StorageError, ValidationError
from dbaas.acme_server.schema import CRUD_EVENT
from dbaas.acme_server.store.connection import ConnectionProvider, transaction
from dbaas.acme_server.store.event_log import EventKind, EventLog, LifecycleEvent
from dbaas.acme_server.store.initializer import SchemaInitializer


def _append(provider, log, event):
    with provider.acquire() as conn:
        with transaction(conn):
            return log.append(conn, event)


def _event(key="1", kind=EventKind.CREATED, actor=None, ts_ms=0, entity="Booking", data=None):
    return LifecycleEvent(
        entity_type=entity,
        entity_key=key,
        kind=kind,
        data=data if data is not None else {"id": int(key)},
        actor=actor,
        ts_ms=ts_ms,
    )


class TestEventLog:
    """Tests for EventLog."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def provider(self, data_dir):
        provider = ConnectionProvider(os.path.join(data_dir, "events.sqlite"), wal_mode=False)
        SchemaInitializer(provider).initialize([CRUD_EVENT])
        return provider

    @pytest.fixture
    def log(self, provider):
        return EventLog(provider, max_limit=1000)

    @pytest.mark.asyncio
    async def test_append_assigns_seq_and_timestamp(self, provider, log):
        stored = _append(provider, log, _event(actor="alice"))

        assert stored.seq == 1
        assert stored.ts_ms > 0
        assert stored.actor == "alice"

        events = await log.query_by_entity("Booking", 1)
        assert events == [stored]

    @pytest.mark.asyncio
    async def test_append_rolls_back_with_caller(self, provider, log):
        with provider.acquire() as conn:
            with pytest.raises(RuntimeError):
                with transaction(conn):
                    log.append(conn, _event())
                    raise RuntimeError("row change failed")

        assert await log.query_by_entity("Booking", "1") == []

    @pytest.mark.asyncio
    async def test_timestamps_never_decrease_per_key(self, provider, log):
        """Events appended later sort after earlier ones even if the clock goes back."""
        _append(provider, log, _event(kind=EventKind.CREATED, ts_ms=3000))
        _append(provider, log, _event(kind=EventKind.UPDATED, ts_ms=1000, data={}))
        _append(provider, log, _event(kind=EventKind.DELETED, ts_ms=2000))
        other = _append(provider, log, _event(key="2", ts_ms=500))

        events = await log.query_by_entity("Booking", 1)

        assert [e.kind for e in events] == [EventKind.CREATED, EventKind.UPDATED, EventKind.DELETED]
        assert [e.ts_ms for e in events] == [3000, 3000, 3000]
        assert [e.seq for e in events] == sorted(e.seq for e in events)
        assert other.ts_ms == 500

    @pytest.mark.asyncio
    async def test_query_by_entity_filters_type(self, provider, log):
        _append(provider, log, _event(entity="Booking"))
        _append(provider, log, _event(entity="Room"))

        events = await log.query_by_entity("Room", "1")

        assert len(events) == 1
        assert events[0].entity_type == "Room"

    @pytest.mark.asyncio
    async def test_query_recent_newest_first(self, provider, log):
        for key in ("1", "2", "3"):
            _append(provider, log, _event(key=key, ts_ms=1000))

        events = await log.query_recent(2)

        assert [e.entity_key for e in events] == ["3", "2"]

    @pytest.mark.asyncio
    async def test_query_by_actor(self, provider, log):
        _append(provider, log, _event(key="1", actor="alice"))
        _append(provider, log, _event(key="2", actor="bob"))
        _append(provider, log, _event(key="3", actor="alice"))

        events = await log.query_by_actor("alice", 10)

        assert [e.entity_key for e in events] == ["3", "1"]

    @pytest.mark.asyncio
    async def test_limit_above_ceiling_rejected(self, log):
        with pytest.raises(ValidationError, match="between 1 and 1000"):
            await log.query_recent(5000)
        with pytest.raises(ValidationError):
            await log.query_by_actor("alice", 0)
        with pytest.raises(ValidationError, match="integer"):
            log.check_limit("10")

    @pytest.mark.asyncio
    async def test_count_by_entity(self, provider, log):
        _append(provider, log, _event(key="1"))
        _append(provider, log, _event(key="1", kind=EventKind.UPDATED, data={}))
        _append(provider, log, _event(key="2"))
        _append(provider, log, _event(entity="Room"))

        counts = await log.count_by_entity()

        assert counts == {"Booking": {"created": 2, "updated": 1}, "Room": {"created": 1}}

    def test_event_to_dict(self):
        event = _event(actor="alice", ts_ms=1000)
        assert event.to_dict() == {
            "seq": None,
            "entity_type": "Booking",
            "entity_key": "1",
            "kind": "created",
            "ts_ms": 1000,
            "actor": "alice",
            "data": {"id": 1},
        }

    def test_append_without_table_raises_storage_error(self, data_dir):
        provider = ConnectionProvider(os.path.join(data_dir, "empty.sqlite"), wal_mode=False)
        log = EventLog(provider)

        with pytest.raises(StorageError) as exc_info:
            _append(provider, log, _event())
        assert exc_info.value.operation == "append_event"
