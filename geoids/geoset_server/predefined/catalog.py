"""
Catalog of predefined regional GEOID sets.

The catalog is shipped as catalog.json next to this module:
    {"format_version": "1.0",
     "sets": [{"key": ..., "description": ..., "identifiers": [...]}]}

Seeding creates each catalog entry as a set named after its key. Sets
that already exist are left alone, so seeding is safe to repeat and never
reverts user edits to a seeded set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import AlreadyExistsError, BackupIOError, NotFoundError, ValidationError
from ..store.versioned_store import VersionedSetStore

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = Path(__file__).with_name("catalog.json")
CATALOG_FORMAT_VERSION = "1.0"


class CatalogEntry(BaseModel):
    """One entry of the catalog file."""

    key: str = Field(..., min_length=1)
    description: str = ""
    identifiers: list[str] = Field(..., min_length=1)

    @field_validator("identifiers")
    @classmethod
    def check_identifiers(cls, value: list[str]) -> list[str]:
        blank = [identifier for identifier in value if not identifier.strip()]
        if blank:
            raise ValueError("identifiers must not be blank")
        return value


class CatalogDocument(BaseModel):
    """The catalog file."""

    format_version: str = CATALOG_FORMAT_VERSION
    sets: list[CatalogEntry]

    @field_validator("format_version")
    @classmethod
    def check_format_version(cls, value: str) -> str:
        if value != CATALOG_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported catalog format version '{value}'. "
                f"Supported: {CATALOG_FORMAT_VERSION}"
            )
        return value


@dataclass(frozen=True)
class PredefinedSet:
    """One catalog entry."""

    key: str
    description: str
    identifiers: tuple[str, ...]


@dataclass
class SeedReport:
    """Outcome of seed_predefined_sets()."""

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def load_catalog(path: str | Path | None = None) -> tuple[PredefinedSet, ...]:
    """Load a catalog file (the bundled one by default).

    Raises:
        BackupIOError: If the file cannot be read
        ValidationError: If the file is not a valid catalog
    """
    catalog_path = Path(path) if path else BUNDLED_CATALOG
    try:
        raw = catalog_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BackupIOError(
            f"Could not read catalog {catalog_path}: {exc}", path=str(catalog_path)
        ) from exc

    try:
        document = CatalogDocument.model_validate_json(raw)
    except PydanticValidationError as exc:
        errors = [
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError(
            f"Invalid catalog {catalog_path}: {errors[0] if errors else exc}",
            errors=errors,
        ) from exc

    entries = [
        PredefinedSet(
            key=entry.key,
            description=entry.description,
            identifiers=tuple(dict.fromkeys(entry.identifiers)),
        )
        for entry in document.sets
    ]
    return tuple(sorted(entries, key=lambda entry: entry.key))


def get_predefined(key: str, path: str | Path | None = None) -> PredefinedSet:
    """Look up one catalog entry by key.

    Raises:
        NotFoundError: If the key is not in the catalog
    """
    catalog = load_catalog(path)
    for entry in catalog:
        if entry.key == key:
            return entry
    available = ", ".join(entry.key for entry in catalog)
    raise NotFoundError(
        f"Unknown predefined set '{key}'. Available: {available}", set_name=key
    )


async def seed_predefined_sets(
    store: VersionedSetStore,
    keys: list[str] | None = None,
    path: str | Path | None = None,
) -> SeedReport:
    """Create catalog sets that don't exist yet.

    Args:
        store: Set store to seed
        keys: Catalog keys to seed (all entries if None)
        path: Catalog file (bundled one if None)

    Returns:
        SeedReport listing created and skipped keys

    Raises:
        NotFoundError: If a requested key is not in the catalog
    """
    if keys is None:
        entries = list(load_catalog(path))
    else:
        entries = [get_predefined(key, path) for key in keys]

    report = SeedReport()
    for entry in entries:
        if await store.set_exists(entry.key):
            report.skipped.append(entry.key)
            continue
        try:
            await store.create_set(entry.key, entry.description, entry.identifiers)
        except AlreadyExistsError:
            report.skipped.append(entry.key)
            continue
        report.created.append(entry.key)

    logger.info(
        "Seeded predefined sets",
        extra={"created": len(report.created), "skipped": len(report.skipped)},
    )
    return report
