"""
Configuration management for the GeoSet server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Each section is a frozen dataclass loaded with from_env()
    - ServerConfig.validate() runs before any component is built

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep variable names stable; deployments set them explicitly
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_FORMATS = ("json", "text")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        data_dir: Directory holding the SQLite database
        db_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "./data"
    db_file: str = "geoid_sets.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_file

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("GEOSET_DATA_DIR", "./data"),
            db_file=os.getenv("GEOSET_DB_FILE", "geoid_sets.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class UniverseConfig:
    """Identifier universe configuration.

    Attributes:
        enforce: Reject identifiers missing from the reference table
    """

    enforce: bool = False

    @classmethod
    def from_env(cls) -> UniverseConfig:
        """Load configuration from environment variables."""
        return cls(enforce=_env_bool("GEOSET_ENFORCE_UNIVERSE", "false"))


@dataclass(frozen=True)
class CatalogConfig:
    """Predefined set catalog configuration.

    Attributes:
        seed_on_start: Create missing predefined sets when the service starts
        catalog_path: Optional path to a catalog JSON file (bundled one if None)
    """

    seed_on_start: bool = False
    catalog_path: str | None = None

    @classmethod
    def from_env(cls) -> CatalogConfig:
        """Load configuration from environment variables."""
        return cls(
            seed_on_start=_env_bool("GEOSET_SEED_PREDEFINED", "false"),
            catalog_path=os.getenv("GEOSET_CATALOG_PATH"),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Backup file configuration.

    Attributes:
        backup_dir: Default directory for backup documents
    """

    backup_dir: str = "./backups"

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(backup_dir=os.getenv("GEOSET_BACKUP_DIR", "./backups"))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: SQLite storage configuration
        universe: Identifier universe configuration
        catalog: Predefined set catalog configuration
        backup: Backup configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    universe: UniverseConfig = field(default_factory=UniverseConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            universe=UniverseConfig.from_env(),
            catalog=CatalogConfig.from_env(),
            backup=BackupConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_file:
            raise ValueError("GEOSET_DB_FILE must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. "
                f"Must be one of: {', '.join(LOG_FORMATS)}"
            )
        if self.catalog.catalog_path and not os.path.exists(self.catalog.catalog_path):
            raise ValueError(f"GEOSET_CATALOG_PATH does not exist: {self.catalog.catalog_path}")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log the loaded configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": str(self.storage.db_path),
                "wal_mode": self.storage.wal_mode,
                "enforce_universe": self.universe.enforce,
                "seed_predefined": self.catalog.seed_on_start,
                "backup_dir": self.backup.backup_dir,
                "log_level": self.observability.log_level,
            },
        )
