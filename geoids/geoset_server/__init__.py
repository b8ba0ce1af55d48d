"""
GeoSet Server - versioned sets of geographic region identifiers (GEOIDs).

This package manages named collections of GEOIDs drawn from a fixed
identifier universe (county FIPS codes):
- Sets are created, extended and trimmed; every change is a new version
- Set algebra (union, intersection, difference, symmetric difference)
  persists its result as a new version of an output set
- Full history can be listed, diffed and rolled back
- Everything can be backed up to and restored from one JSON document

Architecture:
    ┌──────────────┐     ┌──────────────────┐     ┌──────────────┐
    │  SetAlgebra  │────▶│ VersionedSetStore│◀────│ BackupCodec  │
    └──────────────┘     └────────┬─────────┘     └──────┬───────┘
                                  │                      │
                                  ▼                      ▼
                        ┌──────────────────────────────────────┐
                        │  SQLite (set_versions, set_members,  │
                        │  set_changes, identifiers)           │
                        └──────────────────────────────────────┘
                                  ▲
                                  │
                        ┌──────────────────┐
                        │ EnumerationViews │
                        └──────────────────┘

Invariants:
    - History is append-only: mutations add versions, never rewrite them
    - Exactly one version of each set is current
    - The core only handles opaque identifier strings; geometry lives elsewhere

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
