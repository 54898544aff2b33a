"""
Admin module for Acme Server - read-only reporting.
"""

from .reports import AdminReports

__all__ = ["AdminReports"]
