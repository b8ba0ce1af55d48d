"""
Backup module for GeoSet - JSON export and import of all sets.

The backup document carries every version, member and change row so a
restore reproduces the full history, not just the current sets.
"""

from .codec import (
    FORMAT_VERSION,
    BackupCodec,
    BackupDocument,
    BackupResult,
    RestoreResult,
)

__all__ = [
    "FORMAT_VERSION",
    "BackupCodec",
    "BackupDocument",
    "BackupResult",
    "RestoreResult",
]
