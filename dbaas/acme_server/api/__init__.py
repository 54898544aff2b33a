"""
API module for Acme Server.

This module provides the HTTP host (FastAPI) over the storage core:
- Entity CRUD routes
- Read-only admin/ops routes

Invariants:
    - Handlers only translate HTTP to CRUD engine and report calls
    - The schema is initialized before the first request is served

How to change safely:
    - Keep endpoint semantics identical to the engine entry points
    - Version the API prefix if breaking changes are needed
"""

from .http_server import ERROR_STATUS, create_app, status_for
from .settings import HttpSettings

__all__ = [
    "ERROR_STATUS",
    "HttpSettings",
    "create_app",
    "status_for",
]
