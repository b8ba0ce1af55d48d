"""
Store module for GeoSet - versioned GEOID sets on SQLite.

This module handles:
- The SQLite database file, schema and transaction helper
- The append-only versioned set store
- The identifier universe reference table

Invariants:
    - Every mutation creates exactly one new version in one transaction
    - Exactly one version per set is current
    - Member snapshots are never rewritten

How to change safely:
    - Route all writes through VersionedSetStore.create_version
    - Keep schema changes additive
"""

from .database import GeoSetDatabase
from .universe import IdentifierPredicate, IdentifierUniverse, UniverseRecord
from .versioned_store import (
    Absent,
    ChangeRecord,
    ChangeType,
    CurrentLookup,
    Found,
    SetSummary,
    SetVersion,
    VersionComparison,
    VersionedSetStore,
    VersionInfo,
)

__all__ = [
    "GeoSetDatabase",
    "IdentifierPredicate",
    "IdentifierUniverse",
    "UniverseRecord",
    "Absent",
    "ChangeRecord",
    "ChangeType",
    "CurrentLookup",
    "Found",
    "SetSummary",
    "SetVersion",
    "VersionComparison",
    "VersionedSetStore",
    "VersionInfo",
]
