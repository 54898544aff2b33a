"""
Entity registry for Acme Server.

The EntityRegistry is the central authority for entity descriptors.
It provides:
- Registration of descriptors at startup
- Lookup by entity name
- Schema fingerprinting for consistency checks
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen once the schema is initialized
    - Once frozen, no new descriptors can be registered
    - Entity names and table names are unique
    - Fingerprint changes when any descriptor changes

How to change safely:
    - Register all descriptors before bootstrap() initializes the schema
    - Never modify registered descriptors after freeze

Example:
    >>> registry = EntityRegistry()
    >>> registry.register(Booking)
    >>> registry.freeze()
    >>> registry.require("Booking")
    EntityDescriptor(name='Booking', ...)
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, Optional

from ..errors import UnknownEntityError
from .types import EntityDescriptor

logger = logging.getLogger(__name__)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when an entity or table name is registered twice."""
    pass


class EntityRegistry:
    """Registry of all entity descriptors served by the CRUD engine.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of all descriptors (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._entities: Dict[str, EntityDescriptor] = {}
        self._tables: Dict[str, str] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, descriptor: EntityDescriptor) -> None:
        """Register an entity descriptor.

        Args:
            descriptor: The descriptor to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name or table is already taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity '{descriptor.name}': registry is frozen"
                )

            if descriptor.name in self._entities:
                raise DuplicateRegistrationError(
                    f"Entity '{descriptor.name}' already registered"
                )

            table = descriptor.table_name.lower()
            if table in self._tables:
                raise DuplicateRegistrationError(
                    f"Table '{descriptor.table_name}' already used by entity '{self._tables[table]}'"
                )

            self._entities[descriptor.name] = descriptor
            self._tables[table] = descriptor.name
            logger.debug(
                f"Registered entity: {descriptor.name} (table={descriptor.table_name})"
            )

    def get(self, name: str) -> Optional[EntityDescriptor]:
        """Get a descriptor by entity name, or None if not registered."""
        return self._entities.get(name)

    def require(self, name: str) -> EntityDescriptor:
        """Get a descriptor by entity name.

        Raises:
            UnknownEntityError: If the entity is not registered
        """
        descriptor = self._entities.get(name)
        if descriptor is None:
            raise UnknownEntityError(name)
        return descriptor

    def entities(self) -> Iterator[EntityDescriptor]:
        """Iterate over registered descriptors in registration order."""
        yield from self._entities.values()

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Entity registry frozen with {len(self._entities)} entities, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint over the canonical JSON of all descriptors."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by name."""
        return {
            "entities": [
                self._entities[name].to_dict()
                for name in sorted(self._entities.keys())
            ],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> EntityRegistry:
        """Create a new, unfrozen registry from dictionary representation."""
        registry = cls()
        for entity_data in data.get("entities", []):
            registry.register(EntityDescriptor.from_dict(entity_data))
        return registry
