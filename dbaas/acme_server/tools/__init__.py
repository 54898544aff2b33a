"""
Operator tools for Acme Server.

- admin_cli: schema initialization, descriptor snapshots and audit reports
"""

from .admin_cli import AdminCLI, main

__all__ = ["AdminCLI", "main"]
