"""
Admin CLI tool for GeoSet.

Offline maintenance of the GeoSet database:
- backup: write every set, version, member and change to a JSON file
- restore: load a backup file (merge, or replace with --overwrite)
- seed: create predefined catalog sets that don't exist yet
- catalog: list the predefined catalog

Usage:
    geoset-admin backup [output.json]
    geoset-admin restore <input.json> [--overwrite]
    geoset-admin seed [key ...]
    geoset-admin catalog

The database location comes from GEOSET_DATA_DIR / GEOSET_DB_FILE unless
--db is given.

Invariants:
    - Tools work offline (no running service required)
    - Exit code is 0 on success and 1 on any failure
    - Restore is one transaction; a failed restore changes nothing

How to change safely:
    - Add new subcommands additively
    - Keep backup file names sortable by time
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from ..backup import BackupCodec
from ..config import ServerConfig
from ..errors import GeoSetError
from ..predefined import load_catalog, seed_predefined_sets
from ..store import GeoSetDatabase, VersionedSetStore
from ..store.database import utc_now

logger = logging.getLogger(__name__)


@dataclass
class AdminResult:
    """Result of an admin command.

    Attributes:
        success: Whether the command succeeded
        lines: Human-readable output lines
        error: Error message if failed
    """

    success: bool
    lines: list[str]
    error: str | None = None


def default_backup_path(backup_dir: str | Path) -> Path:
    """Timestamped backup file name inside backup_dir."""
    stamp = utc_now().strftime("%Y-%m-%dT%H%M%SZ")
    return Path(backup_dir) / f"geoid_sets_backup_{stamp}.json"


class AdminTool:
    """Runs admin commands against one database.

    Example:
        >>> tool = AdminTool(GeoSetDatabase("data/geoid_sets.db"))
        >>> result = await tool.backup("backups/today.json")
        >>> result.success
        True
    """

    def __init__(
        self,
        db: GeoSetDatabase,
        enforce_universe: bool = False,
        catalog_path: str | None = None,
    ) -> None:
        self.db = db
        self.catalog_path = catalog_path
        self.store = VersionedSetStore(db, enforce_universe=enforce_universe)
        self.codec = BackupCodec(db, enforce_universe=enforce_universe)

    async def backup(self, output: str | Path) -> AdminResult:
        try:
            result = await self.codec.backup(output)
        except GeoSetError as e:
            logger.error(f"Backup failed: {e}", extra={"code": e.code})
            return AdminResult(success=False, lines=[], error=str(e))

        return AdminResult(
            success=True,
            lines=[
                f"Backup written to {result.path}",
                f"  Versions: {result.versions}",
                f"  Members: {result.members}",
                f"  Changes: {result.changes}",
            ],
        )

    async def restore(self, source: str | Path, overwrite: bool = False) -> AdminResult:
        try:
            result = await self.codec.restore(source, overwrite=overwrite)
        except GeoSetError as e:
            logger.error(f"Restore failed: {e}", extra={"code": e.code})
            return AdminResult(success=False, lines=[], error=str(e))

        return AdminResult(
            success=True,
            lines=[
                f"Restored GEOID sets from {source}",
                f"  Sets: {', '.join(result.sets_restored) or 'none'}",
                f"  Versions restored: {result.versions_restored}",
                f"  Versions skipped: {result.versions_skipped}",
                f"  Members restored: {result.members_restored}",
                f"  Changes restored: {result.changes_restored}",
            ],
        )

    async def seed(self, keys: list[str] | None = None) -> AdminResult:
        try:
            await self.store.initialize()
            report = await seed_predefined_sets(self.store, keys or None, path=self.catalog_path)
        except GeoSetError as e:
            logger.error(f"Seeding failed: {e}", extra={"code": e.code})
            return AdminResult(success=False, lines=[], error=str(e))

        return AdminResult(
            success=True,
            lines=[
                f"Created: {', '.join(report.created) or 'none'}",
                f"Skipped (already exist): {', '.join(report.skipped) or 'none'}",
            ],
        )

    def catalog(self) -> AdminResult:
        try:
            entries = load_catalog(self.catalog_path)
        except GeoSetError as e:
            return AdminResult(success=False, lines=[], error=str(e))

        return AdminResult(
            success=True,
            lines=[
                f"{entry.key:<28} {len(entry.identifiers):>5}  {entry.description}"
                for entry in entries
            ],
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geoset-admin",
        description="Back up, restore and seed the GeoSet database",
    )
    parser.add_argument("--db", help="SQLite database path (overrides GEOSET_DATA_DIR/GEOSET_DB_FILE)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    backup = commands.add_parser("backup", help="Write all sets to a JSON backup file")
    backup.add_argument("output", nargs="?", help="Output file (timestamped name in GEOSET_BACKUP_DIR if omitted)")

    restore = commands.add_parser("restore", help="Restore sets from a JSON backup file")
    restore.add_argument("input", help="Backup file to restore")
    restore.add_argument(
        "--overwrite",
        action="store_true",
        help="Delete all existing sets before restoring",
    )

    seed = commands.add_parser("seed", help="Create predefined sets that don't exist yet")
    seed.add_argument("keys", nargs="*", help="Catalog keys to seed (all if omitted)")

    commands.add_parser("catalog", help="List the predefined set catalog")

    return parser


async def run_command(args: argparse.Namespace, config: ServerConfig) -> AdminResult:
    db_path = Path(args.db) if args.db else config.storage.db_path
    tool = AdminTool(
        GeoSetDatabase(
            db_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        ),
        enforce_universe=config.universe.enforce,
        catalog_path=config.catalog.catalog_path,
    )

    if args.command == "backup":
        return await tool.backup(args.output or default_backup_path(config.backup.backup_dir))
    if args.command == "restore":
        return await tool.restore(args.input, overwrite=args.overwrite)
    if args.command == "seed":
        return await tool.seed(args.keys)
    return tool.catalog()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    result = asyncio.run(run_command(args, config))

    if result.success:
        for line in result.lines:
            print(line)
        sys.exit(0)
    else:
        print(f"{args.command.capitalize()} failed: {result.error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
