"""
Schema module for Acme Server.

This module provides the entity descriptor system:
- Descriptor definitions (EntityDescriptor, FieldDef, FieldKind)
- Entity registry for descriptor management
- Built-in descriptors (bookings, lifecycle events)
- YAML/JSON descriptor files

Invariants:
    - Descriptors are registered before the schema is initialized
    - The registry is frozen once the schema exists
    - Column names and types never change for an existing table
"""

from .builtin import BOOKING, CRUD_EVENT, DEFAULT_ENTITIES, EVENTS_TABLE
from .loader import DescriptorFileError, load_descriptors, parse_json, parse_yaml
from .registry import DuplicateRegistrationError, EntityRegistry, RegistryFrozenError
from .types import (
    EntityDescriptor,
    FieldDef,
    FieldKind,
    Record,
    field,
)

__all__ = [
    # Types
    "EntityDescriptor",
    "FieldDef",
    "FieldKind",
    "Record",
    "field",
    # Registry
    "EntityRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    # Built-ins
    "BOOKING",
    "CRUD_EVENT",
    "DEFAULT_ENTITIES",
    "EVENTS_TABLE",
    # Files
    "DescriptorFileError",
    "load_descriptors",
    "parse_yaml",
    "parse_json",
]
