"""
Unit tests for enumeration views.

Tests cover:
- list_all_identifiers over current versions
- which_sets across all versions
- Empty and uninitialized stores
"""

import tempfile
from pathlib import Path

import pytest

from geoids.geoset_server.store.database import GeoSetDatabase
from geoids.geoset_server.store.versioned_store import VersionedSetStore
from geoids.geoset_server.views.enumeration import (
    EnumerationViews,
    IdentifierMembership,
    SetMembership,
)


class TestEnumerationViews:
    """Tests for EnumerationViews."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def db(self, data_dir):
        database = GeoSetDatabase(Path(data_dir) / "geoid_sets.db", wal_mode=False)
        database.create_schema()
        return database

    @pytest.fixture
    def store(self, db):
        return VersionedSetStore(db)

    @pytest.fixture
    def views(self, db):
        return EnumerationViews(db)

    @pytest.mark.asyncio
    async def test_list_all_identifiers(self, store, views):
        await store.create_set("south_florida", "South Florida", ["12086", "12011"])
        await store.create_set("fl", "Florida", ["12086", "12099"])

        rows = await views.list_all_identifiers()

        assert [r.identifier for r in rows] == ["12011", "12086", "12099"]
        miami = rows[1]
        assert miami == IdentifierMembership("12086", 2, ("fl", "south_florida"))
        assert miami.display_names == "fl, south_florida"

    @pytest.mark.asyncio
    async def test_list_all_identifiers_uses_current_versions(self, store, views):
        await store.create_set("fl", "", ["12086", "12011"])
        await store.remove_from_set("fl", ["12086"])

        rows = await views.list_all_identifiers()

        assert [r.identifier for r in rows] == ["12011"]

    @pytest.mark.asyncio
    async def test_which_sets(self, store, views):
        await store.create_set("fl", "Florida", ["12086"])
        await store.add_to_set("fl", ["12011"])
        await store.create_set("another", "Other", ["12086"])
        await store.create_set("ga", "Georgia", ["13001"])

        rows = await views.which_sets("12086")

        assert rows == [
            SetMembership("another", 1, "Other", True),
            SetMembership("fl", 2, "Florida", True),
            SetMembership("fl", 1, "Florida", False),
        ]

    @pytest.mark.asyncio
    async def test_which_sets_includes_old_versions(self, store, views):
        await store.create_set("fl", "", ["12086"])
        await store.remove_from_set("fl", ["12086"])

        rows = await views.which_sets("12086")

        assert [(r.set_name, r.version, r.is_current) for r in rows] == [("fl", 1, False)]

    @pytest.mark.asyncio
    async def test_empty_store(self, views):
        assert await views.list_all_identifiers() == []
        assert await views.which_sets("12086") == []

    @pytest.mark.asyncio
    async def test_uninitialized_store(self, data_dir):
        views = EnumerationViews(GeoSetDatabase(Path(data_dir) / "missing.db"))

        assert await views.list_all_identifiers() == []
        assert await views.which_sets("12086") == []
        assert not (Path(data_dir) / "missing.db").exists()
