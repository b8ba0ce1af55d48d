"""
Unit tests for the admin CLI tool.

Tests cover:
- AdminTool commands
- CLI exit codes and output
"""

import json
from pathlib import Path

import pytest

from geoids.geoset_server.store.database import GeoSetDatabase
from geoids.geoset_server.store.versioned_store import VersionedSetStore
from geoids.geoset_server.tools.admin import AdminTool, default_backup_path, main


class TestAdminTool:
    """Tests for AdminTool."""

    @pytest.fixture
    def db(self, tmp_path):
        database = GeoSetDatabase(tmp_path / "geoid_sets.db", wal_mode=False)
        database.create_schema()
        return database

    @pytest.fixture
    def tool(self, db):
        return AdminTool(db)

    @pytest.mark.asyncio
    async def test_backup_and_restore(self, db, tool, tmp_path):
        store = VersionedSetStore(db)
        await store.create_set("fl", "", ["12086"])
        path = tmp_path / "backup.json"

        backup = await tool.backup(path)
        await store.delete_set("fl")
        restore = await tool.restore(path)

        assert backup.success is True
        assert restore.success is True
        assert "  Versions restored: 1" in restore.lines
        assert await store.get_set("fl") == ["12086"]

    @pytest.mark.asyncio
    async def test_restore_failure_is_reported(self, tool, tmp_path):
        result = await tool.restore(tmp_path / "missing.json")

        assert result.success is False
        assert "missing.json" in result.error

    @pytest.mark.asyncio
    async def test_seed(self, tool):
        result = await tool.seed(["socal"])

        assert result.success is True
        assert result.lines[0] == "Created: socal"

    def test_catalog(self, tool):
        result = tool.catalog()

        assert result.success is True
        assert len(result.lines) == 16
        assert result.lines[0].startswith("colorado_basin")

    def test_default_backup_path(self, tmp_path):
        path = default_backup_path(tmp_path)

        assert path.parent == tmp_path
        assert path.name.startswith("geoid_sets_backup_")
        assert path.suffix == ".json"


class TestAdminCli:
    """Tests for the geoset-admin entry point."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GEOSET_DATA_DIR", str(tmp_path / "data"))
        monkeypatch.setenv("GEOSET_BACKUP_DIR", str(tmp_path / "backups"))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.delenv("GEOSET_CATALOG_PATH", raising=False)
        monkeypatch.delenv("GEOSET_ENFORCE_UNIVERSE", raising=False)
        monkeypatch.delenv("LOG_FORMAT", raising=False)

    def test_seed_then_backup(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["seed", "south_florida"])
        assert exc_info.value.code == 0

        with pytest.raises(SystemExit) as exc_info:
            main(["backup"])
        assert exc_info.value.code == 0

        backups = list(Path(tmp_path / "backups").glob("geoid_sets_backup_*.json"))
        assert len(backups) == 1
        document = json.loads(backups[0].read_text(encoding="utf-8"))
        assert [s["set_name"] for s in document["sets"]] == ["south_florida"]
        assert "Backup written to" in capsys.readouterr().out

    def test_backup_without_database_fails(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["backup", str(tmp_path / "out.json")])

        assert exc_info.value.code == 1
        assert "Backup failed" in capsys.readouterr().out

    def test_restore_with_db_override(self, tmp_path):
        db_path = tmp_path / "other.db"

        with pytest.raises(SystemExit):
            main(["--db", str(db_path), "seed", "socal"])
        with pytest.raises(SystemExit):
            main(["--db", str(db_path), "backup", str(tmp_path / "socal.json")])

        with pytest.raises(SystemExit) as exc_info:
            main(["restore", str(tmp_path / "socal.json"), "--overwrite"])

        assert exc_info.value.code == 0
        assert (tmp_path / "data" / "geoid_sets.db").exists()

    def test_unknown_seed_key(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["seed", "atlantis"])

        assert exc_info.value.code == 1
        assert "Unknown predefined set 'atlantis'" in capsys.readouterr().out

    def test_catalog(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["catalog"])

        assert exc_info.value.code == 0
        assert "missouri_river_basin" in capsys.readouterr().out

    def test_invalid_catalog_file_fails(self, monkeypatch, tmp_path, capsys):
        path = tmp_path / "catalog.json"
        path.write_text(
            json.dumps({"sets": [{"key": 5, "identifiers": ["12086"]}]}), encoding="utf-8"
        )
        monkeypatch.setenv("GEOSET_CATALOG_PATH", str(path))

        with pytest.raises(SystemExit) as exc_info:
            main(["catalog"])

        assert exc_info.value.code == 1
        assert "Catalog failed: Invalid catalog" in capsys.readouterr().out
