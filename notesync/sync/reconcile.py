"""Merge-down: apply a pulled remote snapshot to the local stores.

Folders are upserted concurrently with each other. Each folder's notes
get the enclosing folder id (the pull payload omits it) and are upserted
concurrently with each other and with sibling folders' work. Every store
call goes through ``asyncio.to_thread`` under a shared semaphore.
"""

import asyncio
import hashlib
import json
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from notesync.errors import LocalPersistenceError
from notesync.remote.payloads import parse_snapshot
from notesync.storage.base import EntityStore
from notesync.storage.sync_state import record_to_dict
from notesync.types import (
    EntityKind,
    Folder,
    MergePolicy,
    MergeReport,
    Record,
    SyncConflict,
    utc_now,
)

logger = logging.getLogger(__name__)


def build_conflict_hash(local_version: Dict[str, Any], cloud_version: Dict[str, Any]) -> str:
    """Deterministic hash of a local/remote pair, used to dedupe conflict history."""
    payload = {"cloud": cloud_version, "local": local_version}
    return hashlib.sha256(
        json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()


class ReconciliationEngine:
    """Applies remote snapshots under a merge policy.

    Args:
        folders: Local folder store.
        notes: Local note store.
        policy: ``newer_wins`` keeps a strictly newer local record;
            ``overwrite`` always takes the remote one.
        max_concurrency: Simultaneous store calls.
        conflict_sink: Called (in a worker thread) with every conflict;
            normally ``SQLiteStorage.save_sync_conflict``.
    """

    def __init__(
        self,
        folders: EntityStore,
        notes: EntityStore,
        policy: MergePolicy = MergePolicy.NEWER_WINS,
        max_concurrency: int = 8,
        conflict_sink: Optional[Callable[[SyncConflict], Any]] = None,
    ):
        self.folders = folders
        self.notes = notes
        self.policy = policy
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._conflict_sink = conflict_sink

    async def merge(self, snapshot: Any) -> MergeReport:
        """Apply one ``sync`` query result.

        Raises:
            ProtocolError: The snapshot is malformed; nothing is written.
            LocalPersistenceError: A store write failed.
        """
        folders = parse_snapshot(snapshot)
        report = MergeReport(folders=folders)
        for folder in folders:
            report.remote_versions[(EntityKind.FOLDER, folder.id)] = folder.dt_modify
            for note in folder.notes:
                report.remote_versions[(EntityKind.NOTE, note.id)] = note.dt_modify

        # A store failure in one folder does not cancel its siblings; the
        # first error is re-raised once every folder has settled.
        results = await asyncio.gather(
            *(self._merge_folder(folder, report) for folder in folders),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        logger.info(
            f"Merged {len(folders)} folders: {report.applied} applied, "
            f"{report.unchanged} unchanged, {report.kept_local} kept local, "
            f"{len(report.conflicts)} conflicts"
        )
        return report

    async def _merge_folder(self, folder: Folder, report: MergeReport) -> None:
        await self._apply(EntityKind.FOLDER, self.folders, folder, report)
        results = await asyncio.gather(
            *(self._apply(EntityKind.NOTE, self.notes, note, report) for note in folder.notes),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _apply(
        self, kind: EntityKind, store: EntityStore, remote: Record, report: MergeReport
    ) -> None:
        try:
            async with self._semaphore:
                local = await asyncio.to_thread(store.get, remote.id)
        except Exception as e:
            raise LocalPersistenceError(kind.value, remote.id, e) from e

        if local is None:
            await self._save(kind, store, remote)
            report.applied += 1
            logger.debug(f"Inserted {kind.value} {remote.id}")
            return

        local_snapshot = record_to_dict(local)
        remote_snapshot = record_to_dict(remote)
        if local_snapshot == remote_snapshot:
            report.unchanged += 1
            return

        if self.policy == MergePolicy.OVERWRITE:
            resolution, decision = "cloud_wins", "overwrite_policy"
        elif (remote.dt_modify or 0) >= (local.dt_modify or 0):
            resolution, decision = "cloud_wins", (
                "equal_timestamp_cloud_preferred"
                if remote.dt_modify == local.dt_modify
                else "newer_cloud_timestamp"
            )
        else:
            resolution, decision = "local_wins", "newer_local_timestamp"

        if resolution == "cloud_wins":
            await self._save(kind, store, remote)
            report.applied += 1
        else:
            report.kept_local += 1

        conflict = SyncConflict(
            id=str(uuid.uuid4()),
            kind=kind,
            record_id=remote.id,
            local_version=local_snapshot,
            cloud_version=remote_snapshot,
            resolution=resolution,
            resolved_at=utc_now(),
            policy_decision=decision,
            diff_hash=build_conflict_hash(local_snapshot, remote_snapshot),
        )
        report.conflicts.append(conflict)
        logger.debug(
            f"Conflict on {kind.value} {remote.id}: {resolution} "
            f"(local dt_modify={local.dt_modify}, remote dt_modify={remote.dt_modify})"
        )
        if self._conflict_sink is not None:
            try:
                async with self._semaphore:
                    await asyncio.to_thread(self._conflict_sink, conflict)
            except Exception as e:
                raise LocalPersistenceError(kind.value, remote.id, e) from e

    async def _save(self, kind: EntityKind, store: EntityStore, record: Record) -> None:
        try:
            async with self._semaphore:
                await asyncio.to_thread(store.save, record)
        except Exception as e:
            raise LocalPersistenceError(kind.value, record.id, e) from e
