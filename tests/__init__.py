"""
Acme Server Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite files, no network)
- integration/: Integration tests (full bootstrap, HTTP API, admin CLI)
"""
