"""
Bulk enumeration views across all GEOID sets.

Read-only projections over set_members and set_versions:
- list_all_identifiers: every identifier in any current version, with the
  sets that contain it
- which_sets: every version of every set that contains one identifier

Both views are empty (not an error) when no set exists, including when
the database file has not been created yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..store.database import GeoSetDatabase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentifierMembership:
    """One identifier and the current sets containing it."""

    identifier: str
    set_count: int
    set_names: tuple[str, ...]

    @property
    def display_names(self) -> str:
        return ", ".join(self.set_names)


@dataclass(frozen=True)
class SetMembership:
    """One set version containing a given identifier."""

    set_name: str
    version: int
    description: str
    is_current: bool


class EnumerationViews:
    """Cross-set enumeration queries.

    Example:
        >>> views = EnumerationViews(db)
        >>> [m.set_name for m in await views.which_sets("12086")]
        ['fl', 'fl', 'south_florida']
    """

    def __init__(self, db: GeoSetDatabase) -> None:
        self.db = db

    async def list_all_identifiers(self) -> list[IdentifierMembership]:
        """Every identifier in at least one current version, sorted by identifier."""
        if not self.db.exists():
            logger.debug("Database not initialized, no identifiers to list")
            return []

        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT m.identifier, m.set_name
                FROM set_members m
                JOIN set_versions v
                  ON v.set_name = m.set_name AND v.version = m.version
                WHERE v.is_current = 1
                ORDER BY m.identifier, m.set_name
                """
            )
            rows = cursor.fetchall()

        grouped: dict[str, list[str]] = {}
        for row in rows:
            grouped.setdefault(row["identifier"], []).append(row["set_name"])

        return [
            IdentifierMembership(
                identifier=identifier,
                set_count=len(set_names),
                set_names=tuple(set_names),
            )
            for identifier, set_names in grouped.items()
        ]

    async def which_sets(self, identifier: str) -> list[SetMembership]:
        """Every (set, version) whose members include the identifier.

        Returns:
            Matches ordered by set name, then version descending
        """
        if not self.db.exists():
            logger.debug("Database not initialized, no sets to search")
            return []

        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT v.set_name, v.version, v.description, v.is_current
                FROM set_members m
                JOIN set_versions v
                  ON v.set_name = m.set_name AND v.version = m.version
                WHERE m.identifier = ?
                ORDER BY v.set_name, v.version DESC
                """,
                (identifier,),
            )
            return [
                SetMembership(
                    set_name=row["set_name"],
                    version=row["version"],
                    description=row["description"],
                    is_current=bool(row["is_current"]),
                )
                for row in cursor.fetchall()
            ]
