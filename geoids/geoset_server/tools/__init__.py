"""
CLI tools for GeoSet administration.

This module provides command-line tools for:
- backup / restore: JSON export and import of all sets
- seed / catalog: predefined regional sets

Invariants:
    - Tools work offline (no running service required)
    - All operations are logged for audit
"""

from .admin import AdminResult, AdminTool

__all__ = ["AdminResult", "AdminTool"]
