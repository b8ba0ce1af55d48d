"""
Unit tests for service wiring and logging setup.
"""

import logging

import json_log_formatter
import pytest

from geoids.geoset_server.config import (
    CatalogConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    UniverseConfig,
)
from geoids.geoset_server.main import GeoSetService, setup_logging


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig("DEBUG", "json")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig("warning", "text")))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)


class TestGeoSetService:
    """Tests for GeoSetService."""

    @pytest.fixture
    def config(self, tmp_path):
        return ServerConfig(storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False))

    @pytest.mark.asyncio
    async def test_start_creates_schema(self, config):
        service = GeoSetService(config)

        report = await service.start()

        assert report is None
        assert service.db.exists()
        assert await service.summary() == {"sets": 0, "identifiers": 0}

    @pytest.mark.asyncio
    async def test_start_seeds_catalog(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False),
            catalog=CatalogConfig(seed_on_start=True),
        )
        service = GeoSetService(config)

        report = await service.start()
        again = await GeoSetService(config).start()

        assert len(report.created) == 16
        assert len(again.skipped) == 16
        assert (await service.summary())["sets"] == 16

    @pytest.mark.asyncio
    async def test_components_share_enforcement(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False),
            universe=UniverseConfig(enforce=True),
        )

        service = GeoSetService(config)

        assert service.store.enforce_universe is True
        assert service.codec.enforce_universe is True
        assert service.algebra.store is service.store

    @pytest.mark.asyncio
    async def test_end_to_end_through_service(self, config):
        service = GeoSetService(config)
        await service.start()

        await service.store.create_set("fl", "", ["12086", "12011"])
        await service.store.create_set("ga", "", ["13001"])
        result = await service.algebra.union(["fl", "ga"], "fl_ga")

        assert result.identifiers == ("12011", "12086", "13001")
        rows = await service.views.which_sets("13001")
        assert [r.set_name for r in rows] == ["fl_ga", "ga"]
