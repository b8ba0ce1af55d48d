"""
Unit tests for the backup/restore codec.

Tests cover:
- Backup document layout
- Overwrite and merge restores
- Legacy "geoid" member keys
- Malformed documents and I/O failures
"""

import json
import logging
import tempfile
from pathlib import Path

import pytest

from geoids.geoset_server.backup.codec import FORMAT_VERSION, BackupCodec
from geoids.geoset_server.errors import BackupIOError, ValidationError
from geoids.geoset_server.store.database import GeoSetDatabase
from geoids.geoset_server.store.universe import IdentifierUniverse, UniverseRecord
from geoids.geoset_server.store.versioned_store import VersionedSetStore

TS = "2023-10-15T12:34:56.789"


def legacy_document(**overrides):
    """Backup document as written by older tooling (geoid keys, naive timestamps)."""
    document = {
        "metadata": {"created_at": TS, "version": "1.0"},
        "sets": [
            {
                "set_name": "south_florida",
                "version": 1,
                "description": "Counties in South Florida",
                "created_at": TS,
                "updated_at": TS,
                "is_current": False,
                "parent_version": None,
                "change_description": "Initial definition",
            },
            {
                "set_name": "south_florida",
                "version": 2,
                "description": "Counties in South Florida",
                "created_at": TS,
                "updated_at": TS,
                "is_current": True,
                "parent_version": 1,
                "change_description": "Added GEOIDs",
            },
        ],
        "members": [
            {"set_name": "south_florida", "version": 1, "geoid": "12086"},
            {"set_name": "south_florida", "version": 2, "geoid": "12086"},
            {"set_name": "south_florida", "version": 2, "geoid": "12011"},
        ],
        "changes": [
            {
                "set_name": "south_florida",
                "version": 2,
                "change_type": "ADD",
                "geoid": "12011",
                "changed_at": TS,
            }
        ],
    }
    document.update(overrides)
    return document


class TestBackupCodec:
    """Tests for BackupCodec."""

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
    def codec(self, db):
        return BackupCodec(db)

    def write_json(self, data_dir, document, name="backup.json"):
        path = Path(data_dir) / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    @pytest.mark.asyncio
    async def test_backup_document_layout(self, store, codec, data_dir):
        await store.create_set("fl", "Florida", ["12086", "12011"])
        await store.add_to_set("fl", ["12099"])
        path = Path(data_dir) / "out" / "backup.json"

        result = await codec.backup(path)

        assert result.path == path
        assert (result.versions, result.members, result.changes) == (2, 5, 1)

        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["metadata"]["version"] == FORMAT_VERSION
        assert [(s["set_name"], s["version"], s["is_current"]) for s in document["sets"]] == [
            ("fl", 1, False),
            ("fl", 2, True),
        ]
        assert document["members"][0] == {"set_name": "fl", "version": 1, "identifier": "12011"}
        assert document["changes"][0]["change_type"] == "ADD"
        assert document["changes"][0]["identifier"] == "12099"

    @pytest.mark.asyncio
    async def test_restore_legacy_document(self, store, codec, data_dir):
        path = self.write_json(data_dir, legacy_document())

        result = await codec.restore(path)

        assert result.versions_restored == 2
        assert result.members_restored == 3
        assert result.changes_restored == 1
        assert result.sets_restored == ("south_florida",)
        assert await store.get_set("south_florida") == ["12011", "12086"]
        assert await store.get_set_version("south_florida", 1) == ["12086"]
        meta = await store.get_version("south_florida")
        assert meta.version == 2
        assert meta.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_restore_into_new_database(self, data_dir):
        path = self.write_json(data_dir, legacy_document())
        db = GeoSetDatabase(Path(data_dir) / "fresh" / "geoid_sets.db", wal_mode=False)

        await BackupCodec(db).restore(path)

        assert await VersionedSetStore(db).get_set("south_florida") == ["12011", "12086"]

    @pytest.mark.asyncio
    async def test_merge_skips_existing_versions(self, store, codec, data_dir):
        """Existing versions and their members are left untouched."""
        await store.create_set("south_florida", "Local", ["99999"])
        path = self.write_json(data_dir, legacy_document())

        result = await codec.restore(path)

        assert result.versions_skipped == 1
        assert result.versions_restored == 1
        assert await store.get_set_version("south_florida", 1) == ["99999"]
        assert (await store.get_version("south_florida", 1)).description == "Local"

        # The highest version becomes the only current one
        versions = await store.list_versions("south_florida")
        assert [(v.version, v.is_current) for v in versions] == [(2, True), (1, False)]

    @pytest.mark.asyncio
    async def test_merge_into_existing_set_warns(self, store, codec, data_dir, caplog):
        await store.create_set("south_florida", "Local", ["99999"])
        path = self.write_json(data_dir, legacy_document())

        with caplog.at_level(logging.WARNING):
            await codec.restore(path)

        (record,) = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert record.set_names == ["south_florida"]
        # Changes of the appended version describe the backup's history
        changes = await store.get_changes("south_florida", 2)
        assert [c.identifier for c in changes] == ["12011"]
        assert await store.get_set_version("south_florida", 2) == ["12011", "12086"]

    @pytest.mark.asyncio
    async def test_restore_of_new_sets_does_not_warn(self, codec, data_dir, caplog):
        path = self.write_json(data_dir, legacy_document())

        with caplog.at_level(logging.WARNING):
            await codec.restore(path)

        assert not [r for r in caplog.records if r.levelno == logging.WARNING]

    @pytest.mark.asyncio
    async def test_merge_keeps_newer_local_version_current(self, store, codec, data_dir):
        await store.create_set("south_florida", "", ["12086"])
        await store.add_to_set("south_florida", ["12011"])
        await store.add_to_set("south_florida", ["12099"])
        path = self.write_json(data_dir, legacy_document())

        result = await codec.restore(path)

        assert result.versions_restored == 0
        assert result.versions_skipped == 2
        assert (await store.get_version("south_florida")).version == 3

    @pytest.mark.asyncio
    async def test_overwrite_replaces_everything(self, store, codec, data_dir):
        await store.create_set("south_florida", "Local", ["99999"])
        await store.create_set("other", "", ["1"])
        path = self.write_json(data_dir, legacy_document())

        result = await codec.restore(path, overwrite=True)

        assert result.versions_skipped == 0
        assert [s.name for s in await store.list_sets()] == ["south_florida"]
        assert await store.get_set_version("south_florida", 1) == ["12086"]

    @pytest.mark.asyncio
    async def test_unsupported_format_version(self, codec, data_dir):
        document = legacy_document(metadata={"created_at": TS, "version": "2.0"})
        path = self.write_json(data_dir, document)

        with pytest.raises(ValidationError, match="Unsupported backup format version"):
            await codec.restore(path)

    @pytest.mark.asyncio
    async def test_two_current_versions_rejected(self, store, codec, data_dir):
        document = legacy_document()
        document["sets"][0]["is_current"] = True
        path = self.write_json(data_dir, document)

        with pytest.raises(ValidationError, match="2 current versions"):
            await codec.restore(path)

        assert await store.list_sets() == []

    @pytest.mark.asyncio
    async def test_member_of_unknown_version_rejected(self, codec, data_dir):
        document = legacy_document()
        document["members"].append({"set_name": "south_florida", "version": 7, "geoid": "1"})
        path = self.write_json(data_dir, document)

        with pytest.raises(ValidationError, match="unknown version 7"):
            await codec.restore(path)

    @pytest.mark.asyncio
    async def test_malformed_json(self, codec, data_dir):
        path = Path(data_dir) / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValidationError) as exc_info:
            await codec.restore(path)

        assert exc_info.value.errors

    @pytest.mark.asyncio
    async def test_missing_file(self, codec, data_dir):
        with pytest.raises(BackupIOError) as exc_info:
            await codec.restore(Path(data_dir) / "nope.json")

        assert exc_info.value.path.endswith("nope.json")

    @pytest.mark.asyncio
    async def test_unwritable_destination(self, store, codec, data_dir):
        await store.create_set("fl", "", ["12086"])
        blocker = Path(data_dir) / "blocker"
        blocker.write_text("", encoding="utf-8")

        with pytest.raises(BackupIOError):
            await codec.backup(blocker / "backup.json")

    @pytest.mark.asyncio
    async def test_restore_enforces_universe(self, db, data_dir):
        await IdentifierUniverse(db).load([UniverseRecord("12086", "Miami-Dade", "FL", "12")])
        codec = BackupCodec(db, enforce_universe=True)
        path = self.write_json(data_dir, legacy_document())

        with pytest.raises(ValidationError) as exc_info:
            await codec.restore(path)

        assert exc_info.value.identifiers == ["12011"]
        assert await VersionedSetStore(db).list_sets() == []
