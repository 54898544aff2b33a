"""
Application context and bootstrap for Acme Server.

bootstrap() builds every component explicitly, in dependency order, and
returns one AppContext that request handlers receive by reference:

    ConnectionProvider -> EntityRegistry -> SchemaInitializer (once per store)
        -> EventLog -> CrudEngine -> AdminReports

Invariants:
    - The schema exists before the CrudEngine is constructed
    - The registry is frozen after the schema is initialized
    - A schema failure aborts bootstrap; no context is returned

How to change safely:
    - Add new components after the initializer step
    - Register extra descriptors through the descriptors argument or file
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .admin import AdminReports
from .config import ServerConfig
from .schema import CRUD_EVENT, DEFAULT_ENTITIES, EntityDescriptor, EntityRegistry
from .schema.loader import load_descriptors
from .store import ConnectionProvider, CrudEngine, EventLog, SchemaInitializer

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Process-wide wiring of the storage core.

    Attributes:
        config: Server configuration
        provider: Connection provider
        registry: Frozen entity registry
        initializer: Schema initializer that prepared the store
        event_log: Lifecycle event log
        engine: CRUD engine
        reports: Read-only admin reports
        fingerprint: Registry fingerprint at startup
    """

    config: ServerConfig
    provider: ConnectionProvider
    registry: EntityRegistry
    initializer: SchemaInitializer
    event_log: EventLog
    engine: CrudEngine
    reports: AdminReports
    fingerprint: str


def bootstrap(
    config: ServerConfig | None = None,
    descriptors: Iterable[EntityDescriptor] | None = None,
) -> AppContext:
    """Build the storage core and initialize its schema.

    Args:
        config: Server configuration (loaded from env if not provided)
        descriptors: Entities to serve (built-in bookings if not provided);
            entities from config.descriptors_file are added to these

    Returns:
        Ready AppContext

    Raises:
        SchemaError: If the schema cannot be created or has drifted
        ConnectionError: If the store cannot be opened
        DuplicateRegistrationError: If two descriptors share a name or table
    """
    config = config or ServerConfig.from_env()

    provider = ConnectionProvider.from_config(config.storage)

    registry = EntityRegistry()
    registry.register(CRUD_EVENT)
    for descriptor in descriptors if descriptors is not None else DEFAULT_ENTITIES:
        registry.register(descriptor)
    if config.descriptors_file:
        for descriptor in load_descriptors(config.descriptors_file):
            registry.register(descriptor)

    initializer = SchemaInitializer(provider)
    if not initializer.initialize_once(registry.entities()):
        logger.debug("Schema already initialized in this process", extra=provider.describe())
    fingerprint = registry.freeze()

    event_log = EventLog(provider, max_limit=config.query.max_limit)
    engine = CrudEngine(
        registry,
        provider,
        event_log,
        max_limit=config.query.max_limit,
        default_limit=config.query.default_limit,
    )
    reports = AdminReports(registry, engine, event_log)

    logger.info(
        "Storage core ready",
        extra={
            "entities": [d.name for d in registry.entities()],
            "fingerprint": fingerprint,
            **provider.describe(),
        },
    )

    return AppContext(
        config=config,
        provider=provider,
        registry=registry,
        initializer=initializer,
        event_log=event_log,
        engine=engine,
        reports=reports,
        fingerprint=fingerprint,
    )
