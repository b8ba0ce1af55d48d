"""
Identifier universe: the reference table of valid GEOIDs.

The universe is populated once by an external reference load (county
shapefile ingestion lives outside this package). The set store only
consumes two capabilities from it:
- membership checks, used as a referential constraint on set members
- attribute predicates, whose results are fed into sets as plain strings

Spatial predicates (point-in-polygon, distance, bounding boxes) are
delegated to an external spatial engine and are not implemented here.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass

from .database import GeoSetDatabase

logger = logging.getLogger(__name__)

# Stay well under SQLite's host parameter limit
_CHUNK_SIZE = 500


@dataclass(frozen=True)
class UniverseRecord:
    """One row of the identifier universe.

    Attributes:
        identifier: GEOID (e.g. "12086")
        name: Region name (e.g. "Miami-Dade")
        state_code: State postal code (e.g. "FL")
        state_fips: State FIPS code (e.g. "12")
    """

    identifier: str
    name: str | None = None
    state_code: str | None = None
    state_fips: str | None = None


@dataclass(frozen=True)
class IdentifierPredicate:
    """Attribute filter over the universe.

    All populated fields must match. An empty predicate matches every
    identifier.

    Attributes:
        states: State postal codes
        names: Region names (usually combined with states)
        fips_prefix: Leading digits of the GEOID (e.g. "12" for Florida)
    """

    states: tuple[str, ...] = ()
    names: tuple[str, ...] = ()
    fips_prefix: str | None = None

    def is_empty(self) -> bool:
        return not (self.states or self.names or self.fips_prefix)


def find_unknown_identifiers(
    conn: sqlite3.Connection,
    identifiers: Iterable[str],
) -> list[str]:
    """Return the identifiers absent from the universe table, sorted.

    Runs on the caller's connection so it can take part in an open
    transaction.
    """
    wanted = sorted(set(identifiers))
    known: set[str] = set()
    for start in range(0, len(wanted), _CHUNK_SIZE):
        chunk = wanted[start : start + _CHUNK_SIZE]
        placeholders = ", ".join("?" for _ in chunk)
        cursor = conn.execute(
            f"SELECT identifier FROM identifiers WHERE identifier IN ({placeholders})",
            chunk,
        )
        known.update(row[0] for row in cursor.fetchall())
    return [identifier for identifier in wanted if identifier not in known]


class IdentifierUniverse:
    """Read access (and bootstrap loading) for the identifier reference table.

    Example:
        >>> universe = IdentifierUniverse(db)
        >>> await universe.load([UniverseRecord("12086", "Miami-Dade", "FL", "12")])
        >>> await universe.identifier_exists("12086")
        True
    """

    def __init__(self, db: GeoSetDatabase) -> None:
        self.db = db

    async def load(self, records: Iterable[UniverseRecord]) -> int:
        """Insert or replace reference rows.

        Args:
            records: Universe rows to load

        Returns:
            Number of rows written
        """
        rows = [
            (
                r.identifier,
                r.name,
                r.state_code.upper() if r.state_code else None,
                r.state_fips,
            )
            for r in records
        ]

        with self.db.connect() as conn:
            with self.db.transaction(conn, operation="load_universe"):
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO identifiers
                    (identifier, name, state_code, state_fips)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )

        logger.info("Loaded identifier universe", extra={"rows": len(rows)})
        return len(rows)

    async def count(self) -> int:
        with self.db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM identifiers").fetchone()[0]

    async def identifier_exists(self, identifier: str) -> bool:
        """Check whether an identifier belongs to the universe."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                "SELECT 1 FROM identifiers WHERE identifier = ?",
                (identifier,),
            )
            return cursor.fetchone() is not None

    async def unknown_identifiers(self, identifiers: Iterable[str]) -> list[str]:
        """Return the identifiers that are not part of the universe."""
        with self.db.connect() as conn:
            return find_unknown_identifiers(conn, identifiers)

    async def get_record(self, identifier: str) -> UniverseRecord | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM identifiers WHERE identifier = ?",
                (identifier,),
            ).fetchone()
            if not row:
                return None
            return UniverseRecord(
                identifier=row["identifier"],
                name=row["name"],
                state_code=row["state_code"],
                state_fips=row["state_fips"],
            )

    async def identifiers_by_predicate(self, predicate: IdentifierPredicate) -> list[str]:
        """Select identifiers whose attributes match a predicate.

        Args:
            predicate: Attribute filter

        Returns:
            Matching identifiers, sorted
        """
        query = "SELECT identifier FROM identifiers WHERE 1 = 1"
        params: list[str] = []

        if predicate.states:
            query += f" AND state_code IN ({', '.join('?' for _ in predicate.states)})"
            params.extend(state.upper() for state in predicate.states)

        if predicate.names:
            query += f" AND name IN ({', '.join('?' for _ in predicate.names)})"
            params.extend(predicate.names)

        if predicate.fips_prefix:
            query += " AND identifier LIKE ? || '%'"
            params.append(predicate.fips_prefix)

        query += " ORDER BY identifier"

        with self.db.connect() as conn:
            cursor = conn.execute(query, params)
            return [row[0] for row in cursor.fetchall()]

    async def identifiers_by_states(self, states: Iterable[str]) -> list[str]:
        """Identifiers of every region in the given states."""
        return await self.identifiers_by_predicate(IdentifierPredicate(states=tuple(states)))

    async def identifiers_by_names(self, state: str, names: Iterable[str]) -> list[str]:
        """Identifiers of named regions within one state."""
        return await self.identifiers_by_predicate(
            IdentifierPredicate(states=(state,), names=tuple(names))
        )
