"""
Acme Server - booking persistence with audited, descriptor-driven CRUD.

This package implements the storage core behind the Acme bookings host:
- Entity descriptors declare the shape of every persisted record type
- A schema initializer creates one SQLite table per descriptor at startup
- A generic CRUD engine serves any registered descriptor
- Every create/update/delete is recorded in an append-only event log

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│  HTTP API   │────▶│   CrudEngine    │
    │             │     │  (FastAPI)  │     │                 │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │ one transaction
                              ┌──────────────────────┼──────────────┐
                              ▼                      ▼              │
                        ┌───────────┐          ┌───────────┐        │
                        │  entity   │          │crud_events│◀───────┘
                        │  tables   │          │ (append)  │
                        └───────────┘          └─────┬─────┘
                                                     │
                                                     ▼
                                              ┌─────────────┐
                                              │AdminReports │
                                              └─────────────┘

Invariants:
    - Schema exists for every registered descriptor before requests are served
    - Every successful mutation writes exactly one lifecycle event in the
      same transaction as the row change
    - Lifecycle events are never updated or deleted
    - The entity registry is frozen once the schema has been initialized

How to change safely:
    - Add new entity types as new descriptors; never rename existing columns
    - Schema drift is reported, never repaired automatically
    - Keep the events table layout stable, reports depend on it
"""

from ._version import __version__

__all__ = ["__version__"]
