"""
Store module for Acme Server - SQLite persistence and auditing.

This module handles:
- Per-operation SQLite connections
- Schema initialization and drift detection
- The append-only lifecycle event log
- The descriptor-driven CRUD engine

Invariants:
    - Every operation owns its connection exclusively
    - A row change and its lifecycle event share one transaction
    - Schema initialization runs once per process, before serving

How to change safely:
    - Use transactions for all multi-statement writes
    - Keep all SQL parameterized; identifiers come only from descriptors
"""

from .connection import ConnectionProvider, resolve_database_path, transaction
from .crud import CrudEngine, build_order, build_where
from .event_log import EventKind, EventLog, LifecycleEvent
from .initializer import SchemaInitializer, StartupGate, detect_drift

__all__ = [
    "ConnectionProvider",
    "resolve_database_path",
    "transaction",
    "CrudEngine",
    "build_where",
    "build_order",
    "EventKind",
    "EventLog",
    "LifecycleEvent",
    "SchemaInitializer",
    "StartupGate",
    "detect_drift",
]
