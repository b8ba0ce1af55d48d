"""
Backup and restore of all GEOID sets as one JSON document.

Document layout:
    {
        "metadata": {"created_at": "<ISO-8601>", "version": "1.0"},
        "sets":    [{set_name, version, description, created_at, updated_at,
                     is_current, parent_version, change_description}, ...],
        "members": [{set_name, version, identifier}, ...],
        "changes": [{set_name, version, change_type, identifier, changed_at}, ...]
    }

Member and change rows written by older tooling use the key "geoid"
instead of "identifier"; both are accepted on restore.

Invariants:
    - Restore runs in one transaction; a failure leaves the store unchanged
    - Without overwrite, existing (set_name, version) pairs are never touched,
      and neither are their members or changes
    - After restore every set has exactly one current version

How to change safely:
    - Bump FORMAT_VERSION for incompatible layout changes and keep reading
      the old version
    - New row fields must have defaults so old documents still validate
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import BackupIOError, ValidationError
from ..store.database import GeoSetDatabase, format_ts, parse_ts, utc_now
from ..store.universe import find_unknown_identifiers
from ..store.versioned_store import ChangeType

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
SUPPORTED_FORMAT_VERSIONS = (FORMAT_VERSION,)


class BackupMetadata(BaseModel):
    """Document header."""

    created_at: datetime
    version: str = Field(default=FORMAT_VERSION, description="Backup format version")

    @field_validator("version")
    @classmethod
    def check_version(cls, value: str) -> str:
        if value not in SUPPORTED_FORMAT_VERSIONS:
            raise ValueError(
                f"Unsupported backup format version '{value}'. "
                f"Supported: {', '.join(SUPPORTED_FORMAT_VERSIONS)}"
            )
        return value


class VersionRow(BaseModel):
    """One set_versions row."""

    set_name: str = Field(..., min_length=1)
    version: int = Field(..., gt=0)
    description: str = ""
    created_at: datetime
    updated_at: datetime
    is_current: bool
    parent_version: int | None = None
    change_description: str = ""


class MemberRow(BaseModel):
    """One set_members row."""

    model_config = ConfigDict(populate_by_name=True)

    set_name: str
    version: int
    identifier: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("identifier", "geoid")
    )


class ChangeRow(BaseModel):
    """One set_changes row."""

    model_config = ConfigDict(populate_by_name=True)

    set_name: str
    version: int
    change_type: ChangeType
    identifier: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("identifier", "geoid")
    )
    changed_at: datetime


class BackupDocument(BaseModel):
    """Complete backup of the set tables."""

    metadata: BackupMetadata
    sets: list[VersionRow] = Field(default_factory=list)
    members: list[MemberRow] = Field(default_factory=list)
    changes: list[ChangeRow] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_consistency(self) -> BackupDocument:
        problems: list[str] = []

        keys: set[tuple[str, int]] = set()
        current_counts: dict[str, int] = defaultdict(int)
        for row in self.sets:
            key = (row.set_name, row.version)
            if key in keys:
                problems.append(f"duplicate version {row.version} of set '{row.set_name}'")
            keys.add(key)
            current_counts[row.set_name] += int(row.is_current)

        for set_name, count in sorted(current_counts.items()):
            if count != 1:
                problems.append(f"set '{set_name}' has {count} current versions, expected 1")

        for row in [*self.members, *self.changes]:
            if (row.set_name, row.version) not in keys:
                problems.append(
                    f"row for '{row.identifier}' references unknown version "
                    f"{row.version} of set '{row.set_name}'"
                )

        if problems:
            raise ValueError("; ".join(problems[:10]))
        return self


@dataclass
class BackupResult:
    """Summary of a written backup."""

    path: Path
    versions: int
    members: int
    changes: int


@dataclass
class RestoreResult:
    """Summary of a restore.

    Attributes:
        versions_restored: Version rows inserted
        versions_skipped: Version rows already present (non-overwrite mode)
        members_restored: Member rows inserted
        changes_restored: Change rows inserted
        sets_restored: Names of sets that received at least one version
    """

    versions_restored: int = 0
    versions_skipped: int = 0
    members_restored: int = 0
    changes_restored: int = 0
    sets_restored: tuple[str, ...] = ()


class BackupCodec:
    """Writes and reads backup documents for the whole store.

    Example:
        >>> codec = BackupCodec(db)
        >>> await codec.backup("backups/geoid_sets_2026-10-18.json")
        >>> result = await codec.restore("backups/geoid_sets_2026-10-18.json")
    """

    def __init__(self, db: GeoSetDatabase, enforce_universe: bool = False) -> None:
        self.db = db
        self.enforce_universe = enforce_universe

    def dump(self) -> BackupDocument:
        """Read every version, member and change row into a document."""
        with self.db.connect() as conn:
            sets = conn.execute(
                """
                SELECT set_name, version, description, created_at, updated_at,
                       is_current, parent_version, change_description
                FROM set_versions
                ORDER BY set_name, version
                """
            ).fetchall()
            members = conn.execute(
                """
                SELECT set_name, version, identifier
                FROM set_members
                ORDER BY set_name, version, identifier
                """
            ).fetchall()
            changes = conn.execute(
                """
                SELECT set_name, version, change_type, identifier, changed_at
                FROM set_changes
                ORDER BY set_name, version, identifier
                """
            ).fetchall()

        return BackupDocument(
            metadata=BackupMetadata(created_at=utc_now(), version=FORMAT_VERSION),
            sets=[
                VersionRow(
                    set_name=row["set_name"],
                    version=row["version"],
                    description=row["description"],
                    created_at=parse_ts(row["created_at"]),
                    updated_at=parse_ts(row["updated_at"]),
                    is_current=bool(row["is_current"]),
                    parent_version=row["parent_version"],
                    change_description=row["change_description"],
                )
                for row in sets
            ],
            members=[
                MemberRow(
                    set_name=row["set_name"],
                    version=row["version"],
                    identifier=row["identifier"],
                )
                for row in members
            ],
            changes=[
                ChangeRow(
                    set_name=row["set_name"],
                    version=row["version"],
                    change_type=ChangeType(row["change_type"]),
                    identifier=row["identifier"],
                    changed_at=parse_ts(row["changed_at"]),
                )
                for row in changes
            ],
        )

    async def backup(self, output: str | Path) -> BackupResult:
        """Write a backup document.

        Args:
            output: Destination file (parent directories are created)

        Returns:
            BackupResult with row counts

        Raises:
            BackupIOError: If the file cannot be written
            StoreNotInitializedError: If the database does not exist
        """
        path = Path(output)
        document = self.dump()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise BackupIOError(f"Could not write backup to {path}: {exc}", path=str(path)) from exc

        logger.info(
            "Backup written",
            extra={
                "path": str(path),
                "versions": len(document.sets),
                "members": len(document.members),
                "changes": len(document.changes),
            },
        )
        return BackupResult(
            path=path,
            versions=len(document.sets),
            members=len(document.members),
            changes=len(document.changes),
        )

    def load(self, source: str | Path) -> BackupDocument:
        """Read and validate a backup document.

        Raises:
            BackupIOError: If the file cannot be read
            ValidationError: If the document is malformed
        """
        path = Path(source)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise BackupIOError(f"Could not read backup {path}: {exc}", path=str(path)) from exc

        try:
            return BackupDocument.model_validate_json(raw)
        except PydanticValidationError as exc:
            errors = [
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ValidationError(
                f"Invalid backup document {path}: {errors[0] if errors else exc}",
                errors=errors,
            ) from exc

    async def restore(self, source: str | Path, overwrite: bool = False) -> RestoreResult:
        """Restore a backup document.

        With overwrite, every set row is deleted and the document is
        inserted verbatim. Without it, versions already present are
        skipped along with their members and changes, and each set that
        already existed keeps its highest version as current.

        Versions appended to a set that already existed keep the change
        rows recorded in the document. Those rows diff against the
        document's parent version, so if the local history diverged from
        the backup they no longer describe the step from the local
        predecessor. A warning names the sets this happened to.

        Args:
            source: Backup file
            overwrite: Replace the store contents instead of merging

        Returns:
            RestoreResult with inserted and skipped counts

        Raises:
            BackupIOError: If the file cannot be read
            ValidationError: If the document is malformed or references
                unknown identifiers (when the universe is enforced)
        """
        document = self.load(source)
        self.db.create_schema()
        result = RestoreResult()

        with self.db.connect() as conn:
            with self.db.transaction(conn, operation="restore"):
                if self.enforce_universe:
                    unknown = find_unknown_identifiers(
                        conn, [row.identifier for row in document.members]
                    )
                    if unknown:
                        raise ValidationError(
                            f"Backup references {len(unknown)} identifier(s) outside the "
                            f"identifier universe: {', '.join(unknown[:10])}",
                            identifiers=unknown,
                        )

                if overwrite:
                    conn.execute("DELETE FROM set_changes")
                    conn.execute("DELETE FROM set_members")
                    conn.execute("DELETE FROM set_versions")

                existing = {
                    (row[0], row[1])
                    for row in conn.execute("SELECT set_name, version FROM set_versions")
                }
                preexisting_sets = {set_name for set_name, _ in existing}

                inserted: set[tuple[str, int]] = set()
                for row in document.sets:
                    key = (row.set_name, row.version)
                    if key in existing:
                        result.versions_skipped += 1
                        continue
                    # Current flags of merged sets are settled after all inserts
                    is_current = row.is_current and row.set_name not in preexisting_sets
                    conn.execute(
                        """
                        INSERT INTO set_versions
                        (set_name, version, description, created_at, updated_at,
                         is_current, parent_version, change_description)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            row.set_name,
                            row.version,
                            row.description,
                            format_ts(row.created_at),
                            format_ts(row.updated_at),
                            int(is_current),
                            row.parent_version,
                            row.change_description,
                        ),
                    )
                    inserted.add(key)

                cursor = conn.executemany(
                    """
                    INSERT OR IGNORE INTO set_members (set_name, version, identifier)
                    VALUES (?, ?, ?)
                    """,
                    [
                        (row.set_name, row.version, row.identifier)
                        for row in document.members
                        if (row.set_name, row.version) in inserted
                    ],
                )
                result.members_restored = max(cursor.rowcount, 0)

                cursor = conn.executemany(
                    """
                    INSERT OR IGNORE INTO set_changes
                    (set_name, version, change_type, identifier, changed_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            row.set_name,
                            row.version,
                            row.change_type.value,
                            row.identifier,
                            format_ts(row.changed_at),
                        )
                        for row in document.changes
                        if (row.set_name, row.version) in inserted
                    ],
                )
                result.changes_restored = max(cursor.rowcount, 0)

                merged_sets = sorted({name for name, _ in inserted} & preexisting_sets)
                for set_name in merged_sets:
                    conn.execute(
                        "UPDATE set_versions SET is_current = 0 WHERE set_name = ?",
                        (set_name,),
                    )
                    conn.execute(
                        """
                        UPDATE set_versions SET is_current = 1
                        WHERE set_name = ?
                          AND version = (SELECT MAX(version) FROM set_versions WHERE set_name = ?)
                        """,
                        (set_name, set_name),
                    )

                result.versions_restored = len(inserted)
                result.sets_restored = tuple(sorted({name for name, _ in inserted}))

        if merged_sets:
            logger.warning(
                "Backup versions appended to existing sets",
                extra={"path": str(source), "set_names": merged_sets},
            )

        logger.info(
            "Backup restored",
            extra={
                "path": str(source),
                "overwrite": overwrite,
                "versions_restored": result.versions_restored,
                "versions_skipped": result.versions_skipped,
                "members_restored": result.members_restored,
                "changes_restored": result.changes_restored,
            },
        )
        return result
