"""
SQLite database access for the GeoSet store.

One SQLite file holds the versioned set tables and the identifier
universe reference table. Every operation opens its own connection and
closes it on all exit paths; there is no connection pool or shared
in-memory state.

Invariants:
    - Connections run in autocommit mode; writes use explicit
      BEGIN IMMEDIATE transactions through transaction()
    - Foreign keys are enforced on every connection
    - At most one is_current row per set (partial unique index)
    - Timestamps are stored as ISO-8601 UTC strings with microseconds

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Bump SCHEMA_VERSION and keep old backups restorable

Table schema:
    set_versions:
        - set_name TEXT
        - version INTEGER (> 0)
        - description TEXT
        - created_at TEXT (ISO-8601)
        - updated_at TEXT (ISO-8601)
        - is_current INTEGER (0/1)
        - parent_version INTEGER NULL
        - change_description TEXT
        - PRIMARY KEY (set_name, version)
        - UNIQUE (set_name) WHERE is_current = 1

    set_members:
        - set_name TEXT
        - version INTEGER
        - identifier TEXT
        - PRIMARY KEY (set_name, version, identifier)

    set_changes:
        - set_name TEXT
        - version INTEGER
        - change_type TEXT ('ADD' | 'REMOVE')
        - identifier TEXT
        - changed_at TEXT (ISO-8601)
        - PRIMARY KEY (set_name, version, identifier)

    identifiers:
        - identifier TEXT PRIMARY KEY
        - name TEXT
        - state_code TEXT
        - state_fips TEXT
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from ..errors import (
    ConflictError,
    GeoSetError,
    StoreNotInitializedError,
    TransactionFailure,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    """Format a timestamp for storage."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    """Parse a stored timestamp."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return "locked" in text or "busy" in text


class GeoSetDatabase:
    """SQLite database holding sets, versions, members, changes and the universe.

    Example:
        >>> db = GeoSetDatabase("/var/lib/geoset/geoid_sets.db")
        >>> db.create_schema()
        >>> with db.connect() as conn:
        ...     with db.transaction(conn, set_name="fl", operation="demo"):
        ...         conn.execute("...")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def exists(self) -> bool:
        return self.db_path.exists()

    @contextmanager
    def connect(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a connection for the duration of one operation.

        Args:
            create: Whether to create the database file if it does not exist

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If the file doesn't exist and create=False
        """
        if not create and not self.db_path.exists():
            raise StoreNotInitializedError(
                f"GeoSet database not found: {self.db_path}",
                db_path=str(self.db_path),
            )

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        conn: sqlite3.Connection,
        set_name: str | None = None,
        operation: str | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Run a block inside one BEGIN IMMEDIATE transaction.

        Any exception rolls the transaction back and is re-raised. SQLite
        errors are translated:
        - UNIQUE violations and busy/locked databases become ConflictError
        - every other sqlite3.Error becomes TransactionFailure

        Args:
            conn: Open connection
            set_name: Set being written (for error context)
            operation: Operation name (for error context)
        """
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            if _is_busy(exc):
                raise ConflictError(
                    f"Database busy, could not start {operation or 'transaction'}"
                    + (f" on set '{set_name}'" if set_name else ""),
                    set_name=set_name,
                ) from exc
            raise TransactionFailure(
                f"Could not start {operation or 'transaction'}: {exc}",
                set_name=set_name,
                operation=operation,
            ) from exc

        try:
            yield conn
            conn.execute("COMMIT")
        except GeoSetError:
            self._rollback(conn)
            raise
        except sqlite3.IntegrityError as exc:
            self._rollback(conn)
            if "UNIQUE" in str(exc) or "PRIMARY KEY" in str(exc):
                raise ConflictError(
                    f"Concurrent modification of set '{set_name}' during {operation}: {exc}",
                    set_name=set_name,
                ) from exc
            raise TransactionFailure(
                f"Integrity error during {operation} on set '{set_name}': {exc}",
                set_name=set_name,
                operation=operation,
            ) from exc
        except sqlite3.OperationalError as exc:
            self._rollback(conn)
            if _is_busy(exc):
                raise ConflictError(
                    f"Database busy during {operation} on set '{set_name}'",
                    set_name=set_name,
                ) from exc
            raise TransactionFailure(
                f"Storage error during {operation} on set '{set_name}': {exc}",
                set_name=set_name,
                operation=operation,
            ) from exc
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise TransactionFailure(
                f"Storage error during {operation} on set '{set_name}': {exc}",
                set_name=set_name,
                operation=operation,
            ) from exc
        except BaseException:
            self._rollback(conn)
            raise

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
            logger.debug("Transaction rolled back", extra={"db_path": str(self.db_path)})

    def create_schema(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self.connect(create=True) as conn:
            conn.executescript(f"""
                -- Schema version tracking
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                );

                -- Identifier universe (reference data, loaded externally)
                CREATE TABLE IF NOT EXISTS identifiers (
                    identifier TEXT PRIMARY KEY,
                    name TEXT,
                    state_code TEXT,
                    state_fips TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_identifiers_state
                    ON identifiers(state_code, name);

                -- One row per version of each set
                CREATE TABLE IF NOT EXISTS set_versions (
                    set_name TEXT NOT NULL,
                    version INTEGER NOT NULL CHECK (version > 0),
                    description TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    is_current INTEGER NOT NULL DEFAULT 0 CHECK (is_current IN (0, 1)),
                    parent_version INTEGER,
                    change_description TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (set_name, version)
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_set_versions_one_current
                    ON set_versions(set_name) WHERE is_current = 1;

                -- Full membership snapshot per version
                CREATE TABLE IF NOT EXISTS set_members (
                    set_name TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    identifier TEXT NOT NULL,
                    PRIMARY KEY (set_name, version, identifier),
                    FOREIGN KEY (set_name, version)
                        REFERENCES set_versions(set_name, version)
                );

                CREATE INDEX IF NOT EXISTS idx_set_members_identifier
                    ON set_members(identifier);

                -- Diff of each version against its base version
                CREATE TABLE IF NOT EXISTS set_changes (
                    set_name TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    change_type TEXT NOT NULL CHECK (change_type IN ('ADD', 'REMOVE')),
                    identifier TEXT NOT NULL,
                    changed_at TEXT NOT NULL,
                    PRIMARY KEY (set_name, version, identifier),
                    FOREIGN KEY (set_name, version)
                        REFERENCES set_versions(set_name, version)
                );

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES ({self.SCHEMA_VERSION}, '{format_ts(utc_now())}');
            """)

        logger.info("Initialized GeoSet database", extra={"db_path": str(self.db_path)})
