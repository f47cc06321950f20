"""Tests for SQLite storage: entity stores, queue, metadata and conflicts."""

import sqlite3
from datetime import timedelta

import pytest

from notesync.storage import EntityStore, SQLiteStorage, SyncStorage
from notesync.storage.schema import SCHEMA_VERSION
from notesync.types import EntityKind, Folder, Note, SyncConflict, User, utc_now


class TestSchema:
    def test_schema_version_recorded(self, storage):
        with storage._connect() as conn:
            version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
        assert version == SCHEMA_VERSION

    def test_reopen_is_idempotent(self, storage, temp_db):
        storage.save_folder(Folder(id="f1", dt_modify=1))
        reopened = SQLiteStorage(storage.owner_id, db_path=temp_db)
        assert reopened.get_folder("f1") is not None

    def test_empty_owner_rejected(self, temp_db):
        with pytest.raises(ValueError):
            SQLiteStorage("  ", db_path=temp_db)

    def test_default_path_under_home(self, isolated_home):
        storage = SQLiteStorage("owner-x")
        assert storage.db_path == isolated_home / "notes.db"
        assert storage.db_path.exists()

    def test_satisfies_protocols(self, storage):
        assert isinstance(storage, SyncStorage)
        assert isinstance(storage.folders, EntityStore)
        assert storage.notes.kind == EntityKind.NOTE


class TestEntityStores:
    def test_folder_upsert_by_id(self, storage):
        storage.folders.save(Folder(id="f1", title="Inbox", dt_create=1, dt_modify=10))
        storage.folders.save(Folder(id="f1", title="Renamed", dt_create=1, dt_modify=20, is_removed=True))

        folder = storage.folders.get("f1")
        assert folder.title == "Renamed"
        assert folder.dt_modify == 20
        assert folder.is_removed is True
        assert folder.owner_id == storage.owner_id
        assert len(storage.list_folders(include_removed=True)) == 1
        assert storage.list_folders() == []

    def test_note_roundtrip(self, storage):
        storage.notes.save(Note(id="n1", folder_id="f1", title="t", content="c", dt_create=3, dt_modify=4))

        note = storage.notes.get("n1")
        assert note.folder_id == "f1"
        assert note.content == "c"
        assert note.is_removed is False
        assert [n.id for n in storage.list_notes(folder_id="f1")] == ["n1"]
        assert storage.list_notes(folder_id="other") == []

    def test_prepare_updates_is_strictly_greater(self, storage):
        storage.folders.save(Folder(id="old", dt_modify=40))
        storage.folders.save(Folder(id="boundary", dt_modify=50))
        storage.folders.save(Folder(id="new", dt_modify=51))
        storage.folders.save(Folder(id="undated", dt_modify=None))

        assert [f.id for f in storage.folders.prepare_updates(50)] == ["new"]

    def test_prepare_updates_includes_tombstones(self, storage):
        storage.notes.save(Note(id="n1", folder_id="f1", dt_modify=60, is_removed=True))
        assert [n.id for n in storage.notes.prepare_updates(50)] == ["n1"]

    def test_records_are_owner_scoped(self, storage, temp_db):
        other = SQLiteStorage("owner-2", db_path=temp_db)
        other.folders.save(Folder(id="theirs", dt_modify=100))
        storage.folders.save(Folder(id="mine", dt_modify=100))

        assert [f.id for f in storage.folders.prepare_updates(0)] == ["mine"]
        assert storage.folders.get("theirs") is None

    def test_user_updates(self, storage):
        storage.users.save(User(id=storage.owner_id, name="Ann", dt_reg=1, dt_modify=70))
        storage.users.save(User(id="someone-else", dt_modify=90))

        assert [u.id for u in storage.users.prepare_updates(60)] == [storage.owner_id]
        assert storage.users.prepare_updates(70) == []
        assert storage.users.get(storage.owner_id).name == "Ann"


class TestSyncMeta:
    def test_get_missing(self, storage):
        assert storage.get_sync_meta("nothing") is None

    def test_set_and_overwrite(self, storage):
        storage.set_sync_meta("k", "1")
        storage.set_sync_meta("k", "2")
        assert storage.get_sync_meta("k") == "2"


class TestPendingWriteQueue:
    def test_failure_is_queued_once_per_record(self, storage):
        assert storage.record_write_failure(EntityKind.NOTE, "n1", 150, "boom") == 1
        assert storage.record_write_failure(EntityKind.NOTE, "n1", 160, "boom again") == 2

        pending = storage.get_pending_writes()
        assert len(pending) == 1
        assert pending[0].record_id == "n1"
        assert pending[0].dt_modify == 160
        assert pending[0].retry_count == 2
        assert pending[0].last_error == "boom again"

    def test_dead_letter_after_max_attempts(self, storage):
        for _ in range(3):
            storage.record_write_failure(EntityKind.FOLDER, "f1", 10, "rejected")

        assert storage.get_pending_writes() == []
        dead = storage.get_dead_letters()
        assert [d.record_id for d in dead] == ["f1"]
        assert storage.get_queue_status()["dead_letter"] == 1

    def test_dead_letter_versions(self, storage):
        storage.record_write_failure(EntityKind.NOTE, "pending", 5, "x")
        for _ in range(3):
            storage.record_write_failure(EntityKind.FOLDER, "f1", 10, "rejected")

        assert storage.get_dead_letter_versions() == {(EntityKind.FOLDER, "f1"): 10}

    def test_success_closes_entry(self, storage):
        storage.record_write_failure(EntityKind.NOTE, "n1", 150, "boom")
        assert storage.record_write_success(EntityKind.NOTE, "n1") == 1

        status = storage.get_queue_status()
        assert status["pending"] == 0
        assert status["synced"] == 1
        # A later failure opens a fresh entry
        assert storage.record_write_failure(EntityKind.NOTE, "n1", 170, "again") == 1

    def test_success_without_entry_is_noop(self, storage):
        assert storage.record_write_success(EntityKind.NOTE, "n1") == 0

    def test_requeue_dead_letters(self, storage):
        for _ in range(3):
            storage.record_write_failure(EntityKind.NOTE, "a", 1, "x")
            storage.record_write_failure(EntityKind.NOTE, "b", 1, "x")
        dead = storage.get_dead_letters()
        a_id = next(d.id for d in dead if d.record_id == "a")

        assert storage.requeue_dead_letters([a_id]) == 1
        assert [p.record_id for p in storage.get_pending_writes()] == ["a"]
        assert storage.get_pending_writes()[0].retry_count == 0

        assert storage.requeue_dead_letters() == 1
        assert storage.get_queue_status()["pending"] == 2

    def test_queue_status_by_kind(self, storage):
        storage.record_write_failure(EntityKind.NOTE, "n1", 1, "x")
        storage.record_write_failure(EntityKind.NOTE, "n2", 1, "x")
        storage.record_write_failure(EntityKind.FOLDER, "f1", 1, "x")

        assert storage.get_queue_status()["by_kind"] == {"note": 2, "folder": 1}

    def test_queue_is_owner_scoped(self, storage, temp_db):
        other = SQLiteStorage("owner-2", db_path=temp_db)
        other.record_write_failure(EntityKind.NOTE, "n1", 1, "x")
        assert storage.get_pending_writes() == []


class TestConflictHistory:
    def make_conflict(self, conflict_id="c1", diff_hash="h1", resolved_at=None):
        return SyncConflict(
            id=conflict_id,
            kind=EntityKind.FOLDER,
            record_id="f1",
            local_version={"title": "local"},
            cloud_version={"title": "cloud"},
            resolution="cloud_wins",
            resolved_at=resolved_at or utc_now(),
            policy_decision="newer_cloud_timestamp",
            diff_hash=diff_hash,
        )

    def test_save_and_load(self, storage):
        storage.save_sync_conflict(self.make_conflict())

        conflicts = storage.get_sync_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0].local_version == {"title": "local"}
        assert conflicts[0].kind == EntityKind.FOLDER

    def test_deduplicated_by_hash(self, storage):
        assert storage.save_sync_conflict(self.make_conflict("c1")) == "c1"
        assert storage.save_sync_conflict(self.make_conflict("c2")) == "c1"
        assert len(storage.get_sync_conflicts()) == 1

    def test_clear_before(self, storage):
        old = utc_now() - timedelta(days=10)
        storage.save_sync_conflict(self.make_conflict("old", "h-old", resolved_at=old))
        storage.save_sync_conflict(self.make_conflict("new", "h-new"))

        assert storage.clear_sync_conflicts(before=utc_now() - timedelta(days=1)) == 1
        assert [c.id for c in storage.get_sync_conflicts()] == ["new"]
        assert storage.clear_sync_conflicts() == 1


class TestTransactions:
    def test_rollback_on_error(self, storage):
        with pytest.raises(sqlite3.OperationalError):
            with storage._connect() as conn:
                conn.execute(
                    "INSERT INTO sync_meta (key, value, updated_at) VALUES ('k', 'v', 'now')"
                )
                conn.execute("SELECT * FROM no_such_table")
        assert storage.get_sync_meta("k") is None
