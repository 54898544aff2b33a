"""
Integration tests for admin reports.
"""

import pytest

from dbaas.acme_server.config import QueryConfig, ServerConfig, StorageConfig
from dbaas.acme_server.context import bootstrap
from dbaas.acme_server.errors import UnknownEntityError, ValidationError


@pytest.fixture
def context(tmp_path):
    config = ServerConfig(
        storage=StorageConfig(connection_string=str(tmp_path / "reports.sqlite"), wal_mode=False),
        query=QueryConfig(max_limit=20, default_limit=5),
    )
    return bootstrap(config)


class TestAdminReports:
    """Tests for AdminReports over the built-in booking entity."""

    @pytest.mark.asyncio
    async def test_history_survives_delete(self, context):
        engine, reports = context.engine, context.reports
        booking = await engine.create("Booking", {"name": "Room A", "cost": "75.5"}, actor="alice")
        await engine.update("Booking", booking.key, {"cancelled": True}, actor="alice")
        await engine.delete("Booking", booking.key, actor="ops")

        history = await reports.entity_history("Booking", str(booking.key))

        assert [e.kind.value for e in history] == ["created", "updated", "deleted"]
        assert history[1].data == {"cancelled": {"old": False, "new": True}}
        assert history[2].data["cancelled"] is True

    @pytest.mark.asyncio
    async def test_history_of_unknown_entity(self, context):
        with pytest.raises(UnknownEntityError):
            await context.reports.entity_history("Invoice", 1)

    @pytest.mark.asyncio
    async def test_recent_and_actor_activity(self, context):
        engine, reports = context.engine, context.reports
        for i, actor in enumerate(["alice", "bob", "alice"]):
            await engine.create("Booking", {"name": f"Room {i}", "cost": 10}, actor=actor)

        recent = await reports.recent_activity(limit=2)
        by_alice = await reports.actor_activity("alice")

        assert [e.entity_key for e in recent] == ["3", "2"]
        assert [e.entity_key for e in by_alice] == ["3", "1"]

    @pytest.mark.asyncio
    async def test_configured_ceiling_applies_to_reports(self, context):
        with pytest.raises(ValidationError):
            await context.reports.recent_activity(limit=21)
        with pytest.raises(ValidationError):
            await context.reports.browse("Booking", limit=21)

    @pytest.mark.asyncio
    async def test_browse_uses_default_limit(self, context):
        for i in range(7):
            await context.engine.create("Booking", {"name": f"Room {i}", "cost": i})

        rows = await context.reports.browse("Booking", {"cost__gte": 1})

        assert [r["name"] for r in rows] == [f"Room {i}" for i in range(1, 6)]

    @pytest.mark.asyncio
    async def test_summary(self, context):
        await context.engine.create("Booking", {"name": "Room A", "cost": 1})

        summary = await context.reports.summary()

        assert summary["fingerprint"] == context.fingerprint
        assert summary["entities"] == [
            {
                "entity": "CrudEvent",
                "table": "crud_events",
                "read_only": True,
                "rows": 1,
                "events": {},
            },
            {
                "entity": "Booking",
                "table": "Booking",
                "read_only": False,
                "rows": 1,
                "events": {"created": 1},
            },
        ]
