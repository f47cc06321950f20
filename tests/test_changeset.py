"""Tests for diff-up change set building."""

import pytest

from notesync.sync.changeset import ChangeSetBuilder
from notesync.types import EntityKind, Folder, Note, User


@pytest.fixture
def make_builder(storage):
    def _make(replay=True):
        return ChangeSetBuilder(
            storage.users,
            storage.folders,
            storage.notes,
            pending_source=storage.get_pending_writes if replay else None,
            dead_letter_source=storage.get_dead_letter_versions,
        )

    return _make


class TestDiff:
    @pytest.mark.asyncio
    async def test_only_strictly_newer_records(self, make_builder, storage):
        storage.users.save(User(id=storage.owner_id, name="Ann", dt_modify=50))
        storage.folders.save(Folder(id="f-eq", dt_modify=50))
        storage.folders.save(Folder(id="f-new", dt_modify=51))
        storage.notes.save(Note(id="n-old", folder_id="f-eq", dt_modify=10))
        storage.notes.save(Note(id="n-new", folder_id="f-eq", dt_modify=99))

        changes = await make_builder().build(50)

        assert changes.user == []
        assert changes.ids(EntityKind.FOLDER) == ["f-new"]
        assert changes.ids(EntityKind.NOTE) == ["n-new"]
        assert changes.total == 2

    @pytest.mark.asyncio
    async def test_includes_owner(self, make_builder, storage):
        storage.users.save(User(id=storage.owner_id, name="Ann", dt_modify=70))

        changes = await make_builder().build(50)

        assert changes.ids(EntityKind.USER) == [storage.owner_id]

    @pytest.mark.asyncio
    async def test_empty(self, make_builder, storage):
        storage.folders.save(Folder(id="f1", dt_modify=10))

        changes = await make_builder().build(10)

        assert changes.is_empty()


class TestPendingReplay:
    @pytest.mark.asyncio
    async def test_replays_queued_write_below_checkpoint(self, make_builder, storage):
        storage.notes.save(Note(id="n1", folder_id="f1", dt_modify=150))
        storage.record_write_failure(EntityKind.NOTE, "n1", 150, "timeout")

        changes = await make_builder().build(200)

        assert changes.ids(EntityKind.NOTE) == ["n1"]
        assert changes.replayed == [(EntityKind.NOTE, "n1")]

    @pytest.mark.asyncio
    async def test_replay_disabled(self, make_builder, storage):
        storage.notes.save(Note(id="n1", folder_id="f1", dt_modify=150))
        storage.record_write_failure(EntityKind.NOTE, "n1", 150, "timeout")

        changes = await make_builder(replay=False).build(200)

        assert changes.is_empty()
        assert changes.replayed == []

    @pytest.mark.asyncio
    async def test_replay_deduplicates(self, make_builder, storage):
        storage.notes.save(Note(id="n1", folder_id="f1", dt_modify=250))
        storage.record_write_failure(EntityKind.NOTE, "n1", 150, "timeout")

        changes = await make_builder().build(200)

        assert changes.ids(EntityKind.NOTE) == ["n1"]

    @pytest.mark.asyncio
    async def test_replay_skips_missing_record(self, make_builder, storage):
        storage.record_write_failure(EntityKind.FOLDER, "gone", 10, "rejected")

        changes = await make_builder().build(0)

        assert changes.is_empty()
        assert changes.replayed == []
        assert changes.orphans == [(EntityKind.FOLDER, "gone")]

    @pytest.mark.asyncio
    async def test_dead_letters_not_replayed(self, make_builder, storage):
        storage.folders.save(Folder(id="f1", dt_modify=10))
        for _ in range(3):
            storage.record_write_failure(EntityKind.FOLDER, "f1", 10, "rejected")

        changes = await make_builder().build(100)

        assert changes.is_empty()

    @pytest.mark.asyncio
    async def test_dead_lettered_record_is_held_until_edited(self, make_builder, storage):
        storage.folders.save(Folder(id="f1", dt_modify=150))
        for _ in range(3):
            storage.record_write_failure(EntityKind.FOLDER, "f1", 150, "rejected")

        changes = await make_builder().build(100)

        assert changes.is_empty()
        assert changes.held == [(EntityKind.FOLDER, "f1", 150)]

        storage.folders.save(Folder(id="f1", title="fixed", dt_modify=160))
        changes = await make_builder().build(100)

        assert changes.ids(EntityKind.FOLDER) == ["f1"]
        assert changes.held == []


class TestEchoSuppression:
    @pytest.mark.asyncio
    async def test_records_remote_already_holds_are_not_pushed(self, make_builder, storage):
        storage.folders.save(Folder(id="f-pulled", dt_modify=300))
        storage.folders.save(Folder(id="f-local", dt_modify=310))
        storage.notes.save(Note(id="n-kept", folder_id="f-pulled", dt_modify=500))

        remote_versions = {
            (EntityKind.FOLDER, "f-pulled"): 300,
            # Remote holds an older version; the newer local copy must go up
            (EntityKind.NOTE, "n-kept"): 400,
        }
        changes = await make_builder().build(100, remote_versions)

        assert changes.ids(EntityKind.FOLDER) == ["f-local"]
        assert changes.ids(EntityKind.NOTE) == ["n-kept"]
        assert changes.echoes == [(EntityKind.FOLDER, "f-pulled", 300)]
