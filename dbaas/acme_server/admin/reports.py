"""
Read-only admin/ops reports.

Answers "who changed what, when" from the lifecycle event log, and lets
operators browse entity tables through the CRUD read path. Nothing here
writes to the store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..schema.registry import EntityRegistry
from ..schema.types import Record
from ..store.crud import CrudEngine
from ..store.event_log import EventLog, LifecycleEvent

logger = logging.getLogger(__name__)


class AdminReports:
    """Reporting facade over the event log and the CRUD read path.

    Example:
        >>> reports = AdminReports(registry, engine, event_log)
        >>> history = await reports.entity_history("Booking", 1)
        >>> [e.kind.value for e in history]
        ['created', 'updated', 'deleted']
    """

    def __init__(
        self,
        registry: EntityRegistry,
        engine: CrudEngine,
        event_log: EventLog,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.event_log = event_log

    async def entity_history(self, entity: str, key: Any) -> list[LifecycleEvent]:
        """Every event of one row, oldest first.

        The row may already be deleted; its history remains.
        """
        descriptor = self.registry.require(entity)
        return await self.event_log.query_by_entity(descriptor.name, descriptor.key_text(key))

    async def recent_activity(self, limit: int = 50) -> list[LifecycleEvent]:
        """Latest events across all entities, newest first."""
        return await self.event_log.query_recent(limit)

    async def actor_activity(self, actor: str, limit: int = 50) -> list[LifecycleEvent]:
        """Latest events performed by one actor, newest first."""
        return await self.event_log.query_by_actor(actor, limit)

    async def browse(
        self,
        entity: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        """Read rows of any registered entity."""
        return await self.engine.query(entity, filters, limit=limit, offset=offset)

    async def summary(self) -> dict[str, Any]:
        """Row and event counts for every registered entity."""
        event_counts = await self.event_log.count_by_entity()
        entities = []
        for descriptor in self.registry.entities():
            entities.append(
                {
                    "entity": descriptor.name,
                    "table": descriptor.table_name,
                    "read_only": descriptor.read_only,
                    "rows": await self.engine.count(descriptor.name),
                    "events": event_counts.get(descriptor.name, {}),
                }
            )
        return {
            "fingerprint": self.registry.fingerprint,
            "entities": entities,
        }
