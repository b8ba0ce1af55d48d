"""
GeoSet Server - service wiring and entry point.

This module builds every component from one ServerConfig:
- VersionedSetStore (versioned sets)
- IdentifierUniverse (reference table)
- SetAlgebra (persisted set operations)
- EnumerationViews (cross-set listings)
- BackupCodec (JSON backup/restore)

Usage:
    python -m geoids.geoset_server.main

Running the module initializes the database (and seeds the predefined
catalog when GEOSET_SEED_PREDEFINED=true), then logs a summary of the
stored sets. Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The schema exists before any component is used
    - All components share one GeoSetDatabase and one enforcement setting

How to change safely:
    - Add new components here rather than constructing them ad hoc
    - Keep start() idempotent; it may run on every process start
"""

from __future__ import annotations

import asyncio
import logging
import sys

import json_log_formatter

from .algebra import SetAlgebra
from .backup import BackupCodec
from .config import ServerConfig
from .errors import GeoSetError
from .predefined import SeedReport, seed_predefined_sets
from .store import GeoSetDatabase, IdentifierUniverse, VersionedSetStore
from .views import EnumerationViews

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class GeoSetService:
    """Owns the GeoSet components built from one configuration.

    Attributes:
        config: Server configuration
        db: Shared database handle
        store: Versioned set store
        universe: Identifier universe
        algebra: Set algebra engine
        views: Enumeration views
        codec: Backup/restore codec

    Example:
        >>> service = GeoSetService(ServerConfig())
        >>> await service.start()
        >>> await service.algebra.union(["fl", "ga"], "fl_ga")
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the service.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        enforce = self.config.universe.enforce

        self.db = GeoSetDatabase(
            self.config.storage.db_path,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )
        self.store = VersionedSetStore(self.db, enforce_universe=enforce)
        self.universe = IdentifierUniverse(self.db)
        self.algebra = SetAlgebra(self.store)
        self.views = EnumerationViews(self.db)
        self.codec = BackupCodec(self.db, enforce_universe=enforce)

    async def start(self) -> SeedReport | None:
        """Create the schema and seed the predefined catalog if configured.

        Returns:
            SeedReport when seeding ran, None otherwise
        """
        logger.info("Starting GeoSet service")
        self.config.log_config()

        await self.store.initialize()

        report = None
        if self.config.catalog.seed_on_start:
            report = await seed_predefined_sets(self.store, path=self.config.catalog.catalog_path)

        logger.info("GeoSet service started", extra={"db_path": str(self.db.db_path)})
        return report

    async def summary(self) -> dict[str, int]:
        """Counts of sets and distinct current identifiers."""
        sets = await self.store.list_sets()
        identifiers = await self.views.list_all_identifiers()
        return {"sets": len(sets), "identifiers": len(identifiers)}


async def _run(service: GeoSetService) -> None:
    await service.start()
    logger.info("GeoSet store ready", extra=await service.summary())


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        asyncio.run(_run(GeoSetService(config)))
    except GeoSetError as e:
        logger.error(f"GeoSet startup failed: {e}", extra={"code": e.code})
        sys.exit(1)


if __name__ == "__main__":
    main()
