"""
Tests for the mapping store, its lock and the legacy import.
"""

import json
import os
from unittest.mock import patch

import pytest

from epicsync.application.sync import (
    MappingStore,
    MappingStoreLock,
    import_legacy_mapping,
)
from epicsync.application.sync.mapping import SCHEMA_VERSION, _legacy_local_id
from epicsync.core.domain.entities import MappingEntry, WorkItemRef
from epicsync.core.domain.enums import ItemType
from epicsync.core.exceptions import (
    MappingStoreCorruptError,
    MappingStoreError,
    MappingStoreLockedError,
)


def _ref(remote_id, item_type=ItemType.TASK, provider="github"):
    return WorkItemRef(
        provider=provider,
        remote_id=remote_id,
        remote_url=f"https://github.com/acme/app/issues/{remote_id}",
        item_type=item_type,
        last_synced_fingerprint=f"local-{remote_id}",
        remote_fingerprint=f"remote-{remote_id}",
    )


class TestLoad:
    """Tests for MappingStore.load()."""

    def test_missing_file_is_empty(self, mapping_path):
        store = MappingStore(mapping_path, "github").load()
        assert len(store) == 0
        assert not mapping_path.exists()

    def test_round_trip(self, mapping_path):
        store = MappingStore(mapping_path, "github").load()
        store.record("auth", _ref("1", ItemType.EPIC))
        store.record("auth/login", _ref("2", ItemType.STORY))

        reloaded = MappingStore(mapping_path, "github").load()

        assert [e.local_id for e in reloaded.entries()] == ["auth", "auth/login"]
        assert reloaded.lookup("auth/login") == _ref("2", ItemType.STORY)

    def test_file_format(self, mapping_path):
        store = MappingStore(mapping_path, "github").load()
        store.record("auth", _ref("1", ItemType.EPIC))

        data = json.loads(mapping_path.read_text())

        assert data["schema_version"] == SCHEMA_VERSION
        assert data["entries"][0]["localId"] == "auth"
        assert data["entries"][0]["remoteId"] == "1"

    def test_existing_entries_survive_rewrites(self, mapping_path):
        store = MappingStore(mapping_path, "github").load()
        store.record("auth", _ref("1"))
        first = json.loads(mapping_path.read_text())["entries"][0]

        MappingStore(mapping_path, "github").load().record("auth/login", _ref("2"))

        entries = json.loads(mapping_path.read_text())["entries"]
        assert entries[0] == first
        assert [e["localId"] for e in entries] == ["auth", "auth/login"]

    @pytest.mark.parametrize(
        ("content", "reason"),
        [
            ("{not json", "invalid JSON"),
            ("[]", "root is not an object"),
            ('{"entries": []}', "missing schema_version"),
            ('{"schema_version": 99, "entries": []}', "newer than supported"),
            ('{"schema_version": 1, "entries": {}}', "entries is not a list"),
            ('{"schema_version": 1, "entries": [{"localId": "auth"}]}', "entry 0"),
        ],
    )
    def test_corrupt_files(self, mapping_path, content, reason):
        mapping_path.write_text(content, encoding="utf-8")

        with pytest.raises(MappingStoreCorruptError, match=reason) as exc_info:
            MappingStore(mapping_path, "github").load()

        assert "mapping store unreadable" in str(exc_info.value)
        assert exc_info.value.path == str(mapping_path)

    def test_duplicate_entries_are_corrupt(self, mapping_path):
        entry = MappingEntry("auth", _ref("1")).to_dict()
        mapping_path.write_text(json.dumps({"schema_version": 1, "entries": [entry, entry]}))

        with pytest.raises(MappingStoreCorruptError, match="duplicate entry"):
            MappingStore(mapping_path, "github").load()

    def test_corrupt_file_is_left_untouched(self, mapping_path):
        mapping_path.write_text("{not json")
        with pytest.raises(MappingStoreCorruptError):
            MappingStore(mapping_path, "github").load()
        assert mapping_path.read_text() == "{not json"


class TestRecord:
    """Tests for record/lookup/remove."""

    def test_lookup_unknown(self, mapping_store):
        assert mapping_store.lookup("nope") is None
        assert "nope" not in mapping_store

    def test_upsert_keeps_position(self, mapping_store):
        mapping_store.record("a", _ref("1"))
        mapping_store.record("b", _ref("2"))
        mapping_store.record("a", _ref("3"))

        assert [e.local_id for e in mapping_store.entries()] == ["a", "b"]
        assert mapping_store.lookup("a").remote_id == "3"

    def test_provider_scoping(self, mapping_store):
        mapping_store.record("auth", _ref("7", provider="azure_devops"))

        assert mapping_store.lookup("auth") is None
        assert mapping_store.lookup("auth", provider="azure_devops").remote_id == "7"

    def test_remove(self, mapping_store, mapping_path):
        mapping_store.record("a", _ref("1"))

        assert mapping_store.remove("a") is True
        assert mapping_store.remove("a") is False
        assert MappingStore(mapping_path, "github").load().lookup("a") is None

    def test_write_failure_rolls_back(self, mapping_store):
        mapping_store.record("a", _ref("1"))

        with patch(
            "epicsync.application.sync.mapping.atomic_write_text", side_effect=OSError("disk full")
        ):
            with pytest.raises(MappingStoreError, match="Cannot write"):
                mapping_store.record("a", _ref("2"))
            with pytest.raises(MappingStoreError):
                mapping_store.record("b", _ref("3"))

        assert mapping_store.lookup("a").remote_id == "1"
        assert mapping_store.lookup("b") is None

    def test_no_temp_files_left(self, mapping_store, mapping_path):
        mapping_store.record("a", _ref("1"))
        leftovers = [p for p in mapping_path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_import_entries_keeps_existing(self, mapping_store):
        mapping_store.record("a", _ref("1"))

        added = mapping_store.import_entries(
            [MappingEntry("a", _ref("99")), MappingEntry("b", _ref("2"))]
        )

        assert added == 1
        assert mapping_store.lookup("a").remote_id == "1"
        assert mapping_store.lookup("b").remote_id == "2"


class TestLock:
    """Tests for MappingStoreLock."""

    def test_acquire_and_release(self, mapping_path):
        lock = MappingStoreLock(mapping_path)

        with lock:
            assert lock.held
            assert lock.lock_path.read_text() == str(os.getpid())
        assert not lock.held

    def test_second_holder_is_rejected(self, mapping_path):
        with MappingStoreLock(mapping_path):
            with pytest.raises(MappingStoreLockedError, match="locked by another sync run"):
                MappingStoreLock(mapping_path).acquire()

    def test_reacquire_after_release(self, mapping_path):
        with MappingStoreLock(mapping_path):
            pass
        with MappingStoreLock(mapping_path) as lock:
            assert lock.held


class TestLegacyImport:
    """Tests for import_legacy_mapping."""

    def test_reads_path_number_lines(self, tmp_path):
        legacy = tmp_path / "github-mapping.md"
        legacy.write_text(
            "# Synced issues\n"
            ".claude/epics/auth/epic.md:#10\n"
            ".claude/epics/auth/001.md: 11\n"
            "\n"
            ".claude/epics/auth/001.md:12\n",
            encoding="utf-8",
        )

        entries = import_legacy_mapping(
            legacy,
            provider="github",
            item_type_for=lambda local_id: ItemType.EPIC if "/" not in local_id else ItemType.STORY,
            url_for=lambda remote_id: f"https://github.com/acme/app/issues/{remote_id}",
        )

        assert [(e.local_id, e.ref.remote_id) for e in entries] == [("auth", "10"), ("auth/001", "11")]
        assert entries[0].ref.item_type is ItemType.EPIC
        assert entries[1].ref.remote_url.endswith("/issues/11")
        assert entries[0].ref.last_synced_fingerprint == ""

    def test_malformed_line(self, tmp_path):
        legacy = tmp_path / "mapping.txt"
        legacy.write_text("just-a-path\n", encoding="utf-8")

        with pytest.raises(MappingStoreCorruptError, match="line 1"):
            import_legacy_mapping(legacy, "github", lambda _: ItemType.TASK)

    def test_missing_file(self, tmp_path):
        with pytest.raises(MappingStoreCorruptError):
            import_legacy_mapping(tmp_path / "nope.txt", "github", lambda _: ItemType.TASK)

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            (".claude/epics/auth/epic.md", "auth"),
            (".claude/epics/auth/01-login/story.md", "auth/01-login"),
            (".claude/epics/auth/01-login/2.md", "auth/01-login/2"),
            ("auth\\003.md", "auth/003"),
        ],
    )
    def test_legacy_local_id(self, path, expected):
        assert _legacy_local_id(path) == expected
