"""
Versioned GEOID set store.

This module owns every write to the three set tables:
- set_versions: one immutable row per version of each named set
- set_members: the complete membership snapshot of each version
- set_changes: ADD/REMOVE rows describing each version against its base

All mutation flows through create_version(). A mutation never rewrites
history: it appends a new version and flips the previous one to
not-current in the same transaction.

Invariants:
    - Version numbers start at 1 and increase by one per set
    - Exactly one version per set is current
    - Members of a version never change after it is created
    - For every version v > 1 with base b, set_changes(v) equals
      (members(v) - members(b)) tagged ADD plus
      (members(b) - members(v)) tagged REMOVE
    - Each mutating call is one transaction; failures leave no trace

How to change safely:
    - Keep the statement order in create_version (flip current, insert
      version, insert changes, insert members)
    - Never UPDATE or DELETE member/change rows outside delete_set
    - Route new mutations through _write_version
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from ..errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from .database import GeoSetDatabase, format_ts, parse_ts, utc_now
from .universe import find_unknown_identifiers

logger = logging.getLogger(__name__)

MAX_SET_NAME_LENGTH = 100
_SET_NAME_RE = re.compile(r"[A-Za-z0-9_.\-]+")


class ChangeType(str, Enum):
    """Kind of change recorded for one identifier."""

    ADD = "ADD"
    REMOVE = "REMOVE"


@dataclass(frozen=True)
class Found:
    """Current-version lookup hit."""

    version: int
    description: str


@dataclass(frozen=True)
class Absent:
    """Current-version lookup miss: the set does not exist."""


CurrentLookup = Union[Found, Absent]


@dataclass
class SetVersion:
    """Metadata of one version of a set.

    Attributes:
        set_name: Name of the set
        version: Version number (1-based)
        description: Set description
        created_at: When the version was created
        updated_at: Last update of the row (equals created_at unless restored)
        is_current: Whether this is the live version
        parent_version: Base version this one was derived from
        change_description: What changed in this version
    """

    set_name: str
    version: int
    description: str
    created_at: datetime
    updated_at: datetime
    is_current: bool
    parent_version: int | None
    change_description: str


@dataclass
class SetSummary:
    """One row of list_sets()."""

    name: str
    description: str
    version: int
    member_count: int
    created_at: datetime
    updated_at: datetime


@dataclass
class VersionInfo:
    """One row of list_versions()."""

    version: int
    description: str
    created_at: datetime
    is_current: bool
    parent_version: int | None
    change_description: str
    member_count: int
    added_count: int
    removed_count: int


@dataclass
class ChangeRecord:
    """Audit row for one identifier added or removed by a version."""

    set_name: str
    version: int
    change_type: ChangeType
    identifier: str
    changed_at: datetime


@dataclass
class VersionComparison:
    """Result of compare_versions().

    Attributes:
        added: In version2 but not version1
        removed: In version1 but not version2
        common: In both
        v1_count: Size of version1
        v2_count: Size of version2
    """

    set_name: str
    version1: int
    version2: int
    added: list[str]
    removed: list[str]
    common: list[str]
    v1_count: int
    v2_count: int


def validate_set_name(name: str) -> str:
    """Check a set name and return it unchanged.

    Raises:
        ValidationError: If the name is empty, too long or has illegal characters
    """
    if not isinstance(name, str) or not name:
        raise ValidationError("Set name must be a non-empty string", set_name=str(name))
    if len(name) > MAX_SET_NAME_LENGTH:
        raise ValidationError(
            f"Set name '{name[:20]}...' exceeds {MAX_SET_NAME_LENGTH} characters",
            set_name=name,
        )
    if not _SET_NAME_RE.fullmatch(name):
        raise ValidationError(
            f"Set name '{name}' may only contain letters, digits, '_', '-' and '.'",
            set_name=name,
        )
    return name


def normalize_identifiers(
    identifiers: Iterable[str],
    set_name: str | None = None,
) -> list[str]:
    """Deduplicate identifiers, keeping first-seen order.

    Raises:
        ValidationError: If an identifier is not a non-empty trimmed string
    """
    if isinstance(identifiers, str):
        raise ValidationError(
            "Identifiers must be a collection of strings, not a single string",
            set_name=set_name,
            identifiers=[identifiers],
        )

    result: dict[str, None] = {}
    bad: list[str] = []
    for identifier in identifiers:
        if not isinstance(identifier, str) or not identifier or identifier != identifier.strip():
            bad.append(repr(identifier))
            continue
        result[identifier] = None

    if bad:
        raise ValidationError(
            f"Malformed identifiers for set '{set_name}': {', '.join(bad[:10])}",
            set_name=set_name,
            identifiers=bad,
        )
    return list(result)


class VersionedSetStore:
    """Append-only store of named, versioned GEOID sets.

    Each method opens its own connection; mutating methods run in a single
    BEGIN IMMEDIATE transaction, so concurrent writers to the same set are
    serialized by SQLite. Uniqueness of (set_name, version) and of the
    current flag turn any race that slips through into a ConflictError.

    Example:
        >>> store = VersionedSetStore(GeoSetDatabase("/tmp/geoid_sets.db"))
        >>> await store.initialize()
        >>> await store.create_set("fl", "Florida sample", ["12086", "12011"])
        1
        >>> await store.add_to_set("fl", ["12099"])
        2
    """

    def __init__(self, db: GeoSetDatabase, enforce_universe: bool = False) -> None:
        """Initialize the store.

        Args:
            db: Database handle
            enforce_universe: Reject identifiers missing from the universe table
        """
        self.db = db
        self.enforce_universe = enforce_universe

    async def initialize(self) -> None:
        """Create the database file and schema if needed."""
        self.db.create_schema()

    def is_initialized(self) -> bool:
        return self.db.exists()

    # ------------------------------------------------------------------
    # Row helpers (run on the caller's connection)
    # ------------------------------------------------------------------

    def _lookup_current(self, conn: sqlite3.Connection, name: str) -> CurrentLookup:
        row = conn.execute(
            """
            SELECT version, description FROM set_versions
            WHERE set_name = ? AND is_current = 1
            """,
            (name,),
        ).fetchone()
        if row is None:
            return Absent()
        return Found(version=row["version"], description=row["description"])

    def _version_row(
        self, conn: sqlite3.Connection, name: str, version: int
    ) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM set_versions WHERE set_name = ? AND version = ?",
            (name, version),
        ).fetchone()

    def _read_members(self, conn: sqlite3.Connection, name: str, version: int) -> list[str]:
        cursor = conn.execute(
            """
            SELECT identifier FROM set_members
            WHERE set_name = ? AND version = ?
            ORDER BY identifier
            """,
            (name, version),
        )
        return [row[0] for row in cursor.fetchall()]

    def _resolve_version(self, conn: sqlite3.Connection, name: str, version: int) -> int:
        """Map version=0 to the current version and check existence."""
        if version < 0:
            raise ValidationError(
                f"Version must be >= 0, got {version} for set '{name}'", set_name=name
            )
        if version == 0:
            lookup = self._lookup_current(conn, name)
            if isinstance(lookup, Absent):
                raise NotFoundError(f"GEOID set '{name}' not found", set_name=name)
            return lookup.version
        if self._version_row(conn, name, version) is None:
            raise NotFoundError(
                f"Version {version} of GEOID set '{name}' not found",
                set_name=name,
                version=version,
            )
        return version

    @staticmethod
    def _to_set_version(row: sqlite3.Row) -> SetVersion:
        return SetVersion(
            set_name=row["set_name"],
            version=row["version"],
            description=row["description"],
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
            is_current=bool(row["is_current"]),
            parent_version=row["parent_version"],
            change_description=row["change_description"],
        )

    def _write_version(
        self,
        conn: sqlite3.Connection,
        name: str,
        identifiers: list[str],
        change_description: str,
        base_version: int,
        description: str,
        expected_version: int | None,
    ) -> tuple[int, list[str], list[str]]:
        """Append a new version inside an open transaction.

        Returns:
            Tuple of (new_version, added, removed)
        """
        if self.enforce_universe and identifiers:
            unknown = find_unknown_identifiers(conn, identifiers)
            if unknown:
                raise ValidationError(
                    f"{len(unknown)} identifier(s) for set '{name}' are not in the "
                    f"identifier universe: {', '.join(unknown[:10])}",
                    set_name=name,
                    identifiers=unknown,
                )

        now = format_ts(utc_now())
        lookup = self._lookup_current(conn, name)
        added: list[str] = []
        removed: list[str] = []

        if isinstance(lookup, Absent):
            if expected_version:
                raise ConflictError(
                    f"Set '{name}' expected at version {expected_version} but does not exist",
                    set_name=name,
                    expected_version=expected_version,
                    actual_version=None,
                )
            if base_version > 0:
                raise NotFoundError(
                    f"Version {base_version} of GEOID set '{name}' not found",
                    set_name=name,
                    version=base_version,
                )

            new_version = 1
            conn.execute(
                """
                INSERT INTO set_versions
                (set_name, version, description, created_at, updated_at,
                 is_current, parent_version, change_description)
                VALUES (?, ?, ?, ?, ?, 1, NULL, ?)
                """,
                (name, new_version, description, now, now, change_description),
            )
        else:
            if expected_version is not None and expected_version != lookup.version:
                raise ConflictError(
                    f"Set '{name}' changed concurrently: expected version "
                    f"{expected_version}, found {lookup.version}",
                    set_name=name,
                    expected_version=expected_version,
                    actual_version=lookup.version,
                )

            base = base_version if base_version > 0 else lookup.version
            if self._version_row(conn, name, base) is None:
                raise NotFoundError(
                    f"Base version {base} of GEOID set '{name}' not found",
                    set_name=name,
                    version=base,
                )

            base_members = set(self._read_members(conn, name, base))
            new_members = set(identifiers)
            added = sorted(new_members - base_members)
            removed = sorted(base_members - new_members)
            new_version = lookup.version + 1

            conn.execute(
                "UPDATE set_versions SET is_current = 0 WHERE set_name = ? AND is_current = 1",
                (name,),
            )
            conn.execute(
                """
                INSERT INTO set_versions
                (set_name, version, description, created_at, updated_at,
                 is_current, parent_version, change_description)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (name, new_version, lookup.description, now, now, base, change_description),
            )
            conn.executemany(
                """
                INSERT INTO set_changes
                (set_name, version, change_type, identifier, changed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(name, new_version, ChangeType.ADD.value, i, now) for i in added]
                + [(name, new_version, ChangeType.REMOVE.value, i, now) for i in removed],
            )

        conn.executemany(
            "INSERT INTO set_members (set_name, version, identifier) VALUES (?, ?, ?)",
            [(name, new_version, identifier) for identifier in identifiers],
        )

        return new_version, added, removed

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_set(
        self,
        name: str,
        description: str = "",
        initial_identifiers: Iterable[str] = (),
    ) -> int:
        """Create a new set at version 1.

        Args:
            name: Set name
            description: Set description
            initial_identifiers: Initial members (deduplicated)

        Returns:
            The new version number (always 1)

        Raises:
            AlreadyExistsError: If the set already exists
        """
        validate_set_name(name)
        identifiers = normalize_identifiers(initial_identifiers, set_name=name)

        with self.db.connect() as conn:
            with self.db.transaction(conn, set_name=name, operation="create_set"):
                if isinstance(self._lookup_current(conn, name), Found):
                    raise AlreadyExistsError(f"GEOID set '{name}' already exists", set_name=name)
                version, _, _ = self._write_version(
                    conn,
                    name,
                    identifiers,
                    change_description="Initial definition",
                    base_version=0,
                    description=description,
                    expected_version=None,
                )

        logger.info(
            "Created GEOID set",
            extra={"set_name": name, "version": version, "members": len(identifiers)},
        )
        return version

    async def create_version(
        self,
        name: str,
        new_identifiers: Iterable[str],
        change_description: str = "",
        base_version: int = 0,
        description: str = "",
        expected_version: int | None = None,
    ) -> int:
        """Create the next version of a set, or version 1 if it doesn't exist.

        A new version is written even when the content equals the base.

        Args:
            name: Set name
            new_identifiers: Complete membership of the new version
            change_description: What changed in this version
            base_version: Version to diff against (0 means current)
            description: Set description (only used when the set is created)
            expected_version: Fail with ConflictError unless this is the current
                version (0 means the set must not exist yet)

        Returns:
            The new version number

        Raises:
            NotFoundError: If base_version does not exist
            ConflictError: If expected_version is stale or a concurrent writer won
            ValidationError: If the name or an identifier is invalid
        """
        validate_set_name(name)
        if base_version < 0:
            raise ValidationError(
                f"base_version must be >= 0, got {base_version} for set '{name}'",
                set_name=name,
            )
        identifiers = normalize_identifiers(new_identifiers, set_name=name)

        with self.db.connect() as conn:
            with self.db.transaction(conn, set_name=name, operation="create_version"):
                version, added, removed = self._write_version(
                    conn,
                    name,
                    identifiers,
                    change_description=change_description,
                    base_version=base_version,
                    description=description,
                    expected_version=expected_version,
                )

        logger.info(
            "Created GEOID set version",
            extra={
                "set_name": name,
                "version": version,
                "members": len(identifiers),
                "added": len(added),
                "removed": len(removed),
            },
        )
        return version

    async def add_to_set(
        self,
        name: str,
        identifiers: Iterable[str],
        change_description: str = "Added GEOIDs",
    ) -> int:
        """Add identifiers to a set by creating a new version.

        Returns:
            The new version number, or 0 if every identifier was already present
        """
        additions = normalize_identifiers(identifiers, set_name=name)
        current = await self.get_version(name)
        current_members = await self.get_set_version(name, current.version)

        merged = list(dict.fromkeys([*current_members, *additions]))
        if len(merged) == len(current_members):
            logger.debug("Add was a no-op", extra={"set_name": name})
            return 0

        return await self.create_version(
            name, merged, change_description, expected_version=current.version
        )

    async def remove_from_set(
        self,
        name: str,
        identifiers: Iterable[str],
        change_description: str = "Removed GEOIDs",
    ) -> int:
        """Remove identifiers from a set by creating a new version.

        Returns:
            The new version number, or 0 if none of the identifiers were present
        """
        removals = set(normalize_identifiers(identifiers, set_name=name))
        current = await self.get_version(name)
        current_members = await self.get_set_version(name, current.version)

        remaining = [identifier for identifier in current_members if identifier not in removals]
        if len(remaining) == len(current_members):
            logger.debug("Remove was a no-op", extra={"set_name": name})
            return 0

        return await self.create_version(
            name, remaining, change_description, expected_version=current.version
        )

    async def rollback(self, name: str, target_version: int) -> int:
        """Restore the content of an earlier version as a new version.

        The target version itself is left untouched.

        Returns:
            The new version number
        """
        if target_version <= 0:
            raise ValidationError(
                f"Rollback target must be a positive version, got {target_version}",
                set_name=name,
            )
        target_members = await self.get_set_version(name, target_version)
        return await self.create_version(
            name, target_members, f"Rollback to version {target_version}"
        )

    async def delete_set(self, name: str) -> bool:
        """Delete a set and all of its versions.

        Returns:
            True if deleted, False if the set did not exist
        """
        validate_set_name(name)
        if not self.db.exists():
            return False

        with self.db.connect() as conn:
            with self.db.transaction(conn, set_name=name, operation="delete_set"):
                conn.execute("DELETE FROM set_changes WHERE set_name = ?", (name,))
                conn.execute("DELETE FROM set_members WHERE set_name = ?", (name,))
                cursor = conn.execute("DELETE FROM set_versions WHERE set_name = ?", (name,))
                deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted GEOID set", extra={"set_name": name})
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def set_exists(self, name: str) -> bool:
        with self.db.connect() as conn:
            return isinstance(self._lookup_current(conn, name), Found)

    async def get_set(self, name: str) -> list[str]:
        """Members of the current version of a set, sorted."""
        return await self.get_set_version(name, 0)

    async def get_set_version(self, name: str, version: int = 0) -> list[str]:
        """Members of a specific version (0 means current), sorted.

        Raises:
            NotFoundError: If the set or version does not exist
        """
        with self.db.connect() as conn:
            actual = self._resolve_version(conn, name, version)
            return self._read_members(conn, name, actual)

    async def get_version(self, name: str, version: int = 0) -> SetVersion:
        """Metadata of a specific version (0 means current)."""
        with self.db.connect() as conn:
            actual = self._resolve_version(conn, name, version)
            return self._to_set_version(self._version_row(conn, name, actual))

    async def get_changes(self, name: str, version: int) -> list[ChangeRecord]:
        """Change rows recorded for one version."""
        with self.db.connect() as conn:
            actual = self._resolve_version(conn, name, version)
            cursor = conn.execute(
                """
                SELECT * FROM set_changes
                WHERE set_name = ? AND version = ?
                ORDER BY change_type, identifier
                """,
                (name, actual),
            )
            return [
                ChangeRecord(
                    set_name=row["set_name"],
                    version=row["version"],
                    change_type=ChangeType(row["change_type"]),
                    identifier=row["identifier"],
                    changed_at=parse_ts(row["changed_at"]),
                )
                for row in cursor.fetchall()
            ]

    async def list_sets(self) -> list[SetSummary]:
        """One row per set, describing its current version, ordered by name."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT v.set_name, v.description, v.version, v.updated_at,
                       (SELECT f.created_at FROM set_versions f
                        WHERE f.set_name = v.set_name
                        ORDER BY f.version LIMIT 1) AS first_created_at,
                       (SELECT COUNT(*) FROM set_members m
                        WHERE m.set_name = v.set_name AND m.version = v.version) AS member_count
                FROM set_versions v
                WHERE v.is_current = 1
                ORDER BY v.set_name
                """
            )
            return [
                SetSummary(
                    name=row["set_name"],
                    description=row["description"],
                    version=row["version"],
                    member_count=row["member_count"],
                    created_at=parse_ts(row["first_created_at"]),
                    updated_at=parse_ts(row["updated_at"]),
                )
                for row in cursor.fetchall()
            ]

    async def list_versions(self, name: str) -> list[VersionInfo]:
        """Every version of a set, newest first, with change counts.

        Raises:
            NotFoundError: If the set does not exist
        """
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT s.version, s.description, s.created_at, s.is_current,
                       s.parent_version, s.change_description,
                       (SELECT COUNT(*) FROM set_members m
                        WHERE m.set_name = s.set_name AND m.version = s.version) AS member_count,
                       (SELECT COUNT(*) FROM set_changes c
                        WHERE c.set_name = s.set_name AND c.version = s.version
                          AND c.change_type = 'ADD') AS added_count,
                       (SELECT COUNT(*) FROM set_changes c
                        WHERE c.set_name = s.set_name AND c.version = s.version
                          AND c.change_type = 'REMOVE') AS removed_count
                FROM set_versions s
                WHERE s.set_name = ?
                ORDER BY s.version DESC
                """,
                (name,),
            )
            rows = cursor.fetchall()

        if not rows:
            raise NotFoundError(f"GEOID set '{name}' not found", set_name=name)

        return [
            VersionInfo(
                version=row["version"],
                description=row["description"],
                created_at=parse_ts(row["created_at"]),
                is_current=bool(row["is_current"]),
                parent_version=row["parent_version"],
                change_description=row["change_description"],
                member_count=row["member_count"],
                added_count=row["added_count"],
                removed_count=row["removed_count"],
            )
            for row in rows
        ]

    async def compare_versions(self, name: str, version1: int, version2: int) -> VersionComparison:
        """Diff two versions of a set.

        Raises:
            NotFoundError: If the set or either version does not exist
        """
        with self.db.connect() as conn:
            v1 = self._resolve_version(conn, name, version1)
            v2 = self._resolve_version(conn, name, version2)
            members1 = set(self._read_members(conn, name, v1))
            members2 = set(self._read_members(conn, name, v2))

        return VersionComparison(
            set_name=name,
            version1=v1,
            version2=v2,
            added=sorted(members2 - members1),
            removed=sorted(members1 - members2),
            common=sorted(members1 & members2),
            v1_count=len(members1),
            v2_count=len(members2),
        )
