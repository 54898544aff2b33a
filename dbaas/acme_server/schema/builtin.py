"""
Built-in entity descriptors.

- CRUD_EVENT: backing table of the lifecycle event log (read-only)
- BOOKING: the bookings entity served by the Acme host
"""

from __future__ import annotations

from .types import EntityDescriptor, field

EVENTS_TABLE = "crud_events"

CRUD_EVENT = EntityDescriptor(
    name="CrudEvent",
    table=EVENTS_TABLE,
    fields=(
        field("id", "integer", primary_key=True, auto=True),
        field("entity_type", "text", indexed=True),
        field("entity_key", "text", indexed=True),
        field("kind", "text"),
        field("ts_ms", "timestamp", indexed=True),
        field("actor", "text", nullable=True, indexed=True),
        field("data_json", "text"),
    ),
    read_only=True,
    description="Append-only log of create/update/delete events",
)

BOOKING = EntityDescriptor(
    name="Booking",
    fields=(
        field("id", "integer", primary_key=True, auto=True),
        field("name", "text", indexed=True),
        field("room_type", "text", default="Single"),
        field("room_number", "integer", nullable=True),
        field("booking_start_date", "timestamp", nullable=True, indexed=True),
        field("booking_end_date", "timestamp", nullable=True),
        field("cost", "decimal"),
        field("notes", "text", nullable=True),
        field("cancelled", "boolean", default=False),
    ),
    description="Room bookings",
)

DEFAULT_ENTITIES: tuple[EntityDescriptor, ...] = (BOOKING,)
