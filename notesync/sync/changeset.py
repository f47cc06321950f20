"""Diff-up: collect local records that need to be pushed."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from notesync.storage.base import EntityStore
from notesync.types import ChangeSet, EntityKind, QueuedWrite, Record

logger = logging.getLogger(__name__)

_MISSING = object()


class ChangeSetBuilder:
    """Builds the change set for one cycle.

    A record is a candidate when its ``dt_modify`` is strictly greater
    than the checkpoint, or when it has an open entry in the pending-write
    queue (a write that failed in an earlier cycle). Candidates the
    remote already holds at the same ``dt_modify`` (because merge-down
    just wrote them) are reported as echoes instead of being pushed.
    Records whose write is dead-lettered at the same ``dt_modify`` are
    held back until the entry is requeued.

    Args:
        users: Owner store.
        folders: Folder store.
        notes: Note store.
        pending_source: Returns open queue entries; ``None`` disables replay.
        dead_letter_source: Returns ``{(kind, id): dt_modify}`` of
            dead-lettered writes.
    """

    def __init__(
        self,
        users: EntityStore,
        folders: EntityStore,
        notes: EntityStore,
        pending_source: Optional[Callable[[], List[QueuedWrite]]] = None,
        dead_letter_source: Optional[Callable[[], Dict[Tuple[EntityKind, str], Optional[int]]]] = None,
    ):
        self._stores: Dict[EntityKind, EntityStore] = {
            EntityKind.USER: users,
            EntityKind.FOLDER: folders,
            EntityKind.NOTE: notes,
        }
        self._pending_source = pending_source
        self._dead_letter_source = dead_letter_source

    async def build(
        self,
        since: int,
        remote_versions: Optional[Dict[Tuple[EntityKind, str], Optional[int]]] = None,
    ) -> ChangeSet:
        user, folders, notes = await asyncio.gather(
            asyncio.to_thread(self._stores[EntityKind.USER].prepare_updates, since),
            asyncio.to_thread(self._stores[EntityKind.FOLDER].prepare_updates, since),
            asyncio.to_thread(self._stores[EntityKind.NOTE].prepare_updates, since),
        )
        changes = ChangeSet(user=list(user), folders=list(folders), notes=list(notes))
        logger.debug(
            f"Modified since {since}: {len(changes.user)} user, "
            f"{len(changes.folders)} folders, {len(changes.notes)} notes"
        )

        if self._pending_source is not None:
            await self._add_pending(changes)

        if remote_versions:
            self._suppress_echoes(changes, remote_versions)

        if self._dead_letter_source is not None:
            dead = await asyncio.to_thread(self._dead_letter_source)
            if dead:
                self._hold_dead_letters(changes, dead)

        logger.info(
            f"Change set: {changes.total} to push "
            f"({len(changes.replayed)} replayed, {len(changes.echoes)} echoes suppressed, "
            f"{len(changes.held)} held)"
        )
        return changes

    async def _add_pending(self, changes: ChangeSet) -> None:
        pending = await asyncio.to_thread(self._pending_source)
        present: Set[Tuple[EntityKind, str]] = {
            (kind, record.id) for kind, record in changes.entries()
        }
        for entry in pending:
            key = (entry.kind, entry.record_id)
            if key in present:
                changes.replayed.append(key)
                continue
            record = await asyncio.to_thread(self._stores[entry.kind].get, entry.record_id)
            if record is None:
                logger.warning(
                    f"Pending write {entry.kind.value} {entry.record_id} has no local record; dropping it"
                )
                changes.orphans.append(key)
                continue
            changes.replayed.append(key)
            present.add(key)
            self._bucket(changes, entry.kind).append(record)
            logger.debug(
                f"Replaying {entry.kind.value} {entry.record_id} (attempt {entry.retry_count + 1})"
            )

    @staticmethod
    def _bucket(changes: ChangeSet, kind: EntityKind) -> List[Record]:
        if kind == EntityKind.USER:
            return changes.user
        if kind == EntityKind.FOLDER:
            return changes.folders
        return changes.notes

    def _suppress_echoes(
        self,
        changes: ChangeSet,
        remote_versions: Dict[Tuple[EntityKind, str], Optional[int]],
    ) -> None:
        for kind in (EntityKind.USER, EntityKind.FOLDER, EntityKind.NOTE):
            bucket = self._bucket(changes, kind)
            kept = []
            for record in bucket:
                remote_dt = remote_versions.get((kind, record.id), _MISSING)
                if remote_dt is not _MISSING and remote_dt == record.dt_modify:
                    changes.echoes.append((kind, record.id, record.dt_modify))
                else:
                    kept.append(record)
            bucket[:] = kept

    def _hold_dead_letters(
        self,
        changes: ChangeSet,
        dead: Dict[Tuple[EntityKind, str], Optional[int]],
    ) -> None:
        for kind in (EntityKind.USER, EntityKind.FOLDER, EntityKind.NOTE):
            bucket = self._bucket(changes, kind)
            kept = []
            for record in bucket:
                dead_dt = dead.get((kind, record.id), _MISSING)
                if dead_dt is not _MISSING and dead_dt == record.dt_modify:
                    changes.held.append((kind, record.id, record.dt_modify))
                    logger.debug(f"Holding dead-lettered {kind.value} {record.id}")
                else:
                    kept.append(record)
            bucket[:] = kept
