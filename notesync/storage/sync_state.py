"""Sync bookkeeping for notesync storage.

SyncState handles the per-owner sync metadata (checkpoint), the durable
pending-write queue with retry counting and dead-lettering, and the
merge conflict history. Receives the host SQLiteStorage instance to
access the DB connection.
"""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from notesync.types import (
    SYNC_COMPLETED,
    SYNC_DEAD_LETTER,
    SYNC_PENDING,
    EntityKind,
    QueuedWrite,
    SyncConflict,
)

logger = logging.getLogger(__name__)

# Failed writes are dead-lettered after this many failed cycles by default
DEFAULT_MAX_WRITE_ATTEMPTS = 5


class SyncState:
    """Sync metadata, pending-write queue and conflict history.

    Args:
        host: The SQLiteStorage instance providing DB access.
    """

    def __init__(self, host, max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS):
        self._host = host
        self.max_write_attempts = max_write_attempts

    # === Sync Metadata ===

    def get_sync_meta(self, key: str) -> Optional[str]:
        with self._host._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_sync_meta(self, key: str, value: str) -> None:
        with self._host._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, self._host._now()),
            )
            conn.commit()

    # === Pending-Write Queue ===

    def record_write_failure(
        self, kind: EntityKind, record_id: str, dt_modify: Optional[int], error: str
    ) -> int:
        """Queue (or re-queue) a failed write and bump its retry count.

        Entries reaching ``max_write_attempts`` move to dead-letter state.

        Returns:
            The entry's retry count after this failure.
        """
        now = self._host._now()
        owner_id = self._host.owner_id
        with self._host._connect() as conn:
            conn.execute(
                """INSERT INTO sync_queue
                   (owner_id, kind, record_id, dt_modify, state, retry_count,
                    last_error, queued_at, last_attempt_at)
                   VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                   ON CONFLICT(owner_id, kind, record_id) WHERE state != 1
                   DO UPDATE SET
                       dt_modify = excluded.dt_modify,
                       retry_count = sync_queue.retry_count + 1,
                       last_error = excluded.last_error,
                       last_attempt_at = excluded.last_attempt_at""",
                (owner_id, kind.value, record_id, dt_modify, SYNC_PENDING, error[:500], now, now),
            )
            row = conn.execute(
                """SELECT id, state, retry_count FROM sync_queue
                   WHERE owner_id = ? AND kind = ? AND record_id = ? AND state != ?""",
                (owner_id, kind.value, record_id, SYNC_COMPLETED),
            ).fetchone()
            retry_count = row["retry_count"] if row else 0
            if row and row["state"] == SYNC_PENDING and retry_count >= self.max_write_attempts:
                conn.execute(
                    "UPDATE sync_queue SET state = ? WHERE id = ?", (SYNC_DEAD_LETTER, row["id"])
                )
                logger.warning(
                    f"Write {kind.value}:{record_id} failed {retry_count} times, "
                    f"moving to dead letter queue"
                )
            conn.commit()
        return retry_count

    def record_write_success(self, kind: EntityKind, record_id: str) -> int:
        """Close any open queue entry for a record now confirmed remotely."""
        with self._host._connect() as conn:
            cursor = conn.execute(
                """UPDATE sync_queue SET state = ?, last_error = NULL, last_attempt_at = ?
                   WHERE owner_id = ? AND kind = ? AND record_id = ? AND state != ?""",
                (
                    SYNC_COMPLETED,
                    self._host._now(),
                    self._host.owner_id,
                    kind.value,
                    record_id,
                    SYNC_COMPLETED,
                ),
            )
            conn.commit()
            return cursor.rowcount

    def _queued_writes(self, state: int, limit: int) -> List[QueuedWrite]:
        with self._host._connect() as conn:
            rows = conn.execute(
                """SELECT id, kind, record_id, dt_modify, state, retry_count, last_error,
                          queued_at, last_attempt_at
                   FROM sync_queue
                   WHERE owner_id = ? AND state = ?
                   ORDER BY id
                   LIMIT ?""",
                (self._host.owner_id, state, limit),
            ).fetchall()
        return [
            QueuedWrite(
                id=row["id"],
                kind=EntityKind(row["kind"]),
                record_id=row["record_id"],
                dt_modify=row["dt_modify"],
                state=row["state"],
                retry_count=row["retry_count"],
                last_error=row["last_error"],
                queued_at=row["queued_at"],
                last_attempt_at=row["last_attempt_at"],
            )
            for row in rows
        ]

    def get_pending_writes(self, limit: int = 500) -> List[QueuedWrite]:
        """Failed writes still eligible for replay."""
        return self._queued_writes(SYNC_PENDING, limit)

    def get_dead_letters(self, limit: int = 100) -> List[QueuedWrite]:
        return self._queued_writes(SYNC_DEAD_LETTER, limit)

    def get_dead_letter_versions(self) -> Dict[Tuple[EntityKind, str], Optional[int]]:
        """``dt_modify`` of every dead-lettered write, keyed by (kind, record id)."""
        with self._host._connect() as conn:
            rows = conn.execute(
                "SELECT kind, record_id, dt_modify FROM sync_queue WHERE owner_id = ? AND state = ?",
                (self._host.owner_id, SYNC_DEAD_LETTER),
            ).fetchall()
        return {(EntityKind(row["kind"]), row["record_id"]): row["dt_modify"] for row in rows}

    def requeue_dead_letters(self, entry_ids: Optional[List[int]] = None) -> int:
        """Move dead-lettered entries back to pending with a fresh retry count.

        Args:
            entry_ids: Specific queue entry IDs, or None for all.
        Returns:
            Number of entries requeued.
        """
        params: List[Any] = [SYNC_PENDING, self._host.owner_id, SYNC_DEAD_LETTER]
        query = (
            "UPDATE sync_queue SET state = ?, retry_count = 0, last_error = NULL "
            "WHERE owner_id = ? AND state = ?"
        )
        if entry_ids:
            placeholders = ",".join("?" for _ in entry_ids)
            query += f" AND id IN ({placeholders})"
            params.extend(entry_ids)
        with self._host._connect() as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount

    def get_queue_status(self) -> Dict[str, Any]:
        """Queue counts by state, and pending entries by kind."""
        owner_id = self._host.owner_id
        with self._host._connect() as conn:
            counts = {
                state: conn.execute(
                    "SELECT COUNT(*) FROM sync_queue WHERE owner_id = ? AND state = ?",
                    (owner_id, state),
                ).fetchone()[0]
                for state in (SYNC_PENDING, SYNC_COMPLETED, SYNC_DEAD_LETTER)
            }
            kind_rows = conn.execute(
                """SELECT kind, COUNT(*) AS count FROM sync_queue
                   WHERE owner_id = ? AND state = ?
                   GROUP BY kind""",
                (owner_id, SYNC_PENDING),
            ).fetchall()
        return {
            "pending": counts[SYNC_PENDING],
            "synced": counts[SYNC_COMPLETED],
            "dead_letter": counts[SYNC_DEAD_LETTER],
            "by_kind": {row["kind"]: row["count"] for row in kind_rows},
        }

    # === Conflict History ===

    def save_sync_conflict(self, conflict: SyncConflict) -> str:
        """Save a conflict record. Deduplicates by diff_hash when available."""
        with self._host._connect() as conn:
            if conflict.diff_hash:
                existing = conn.execute(
                    "SELECT id FROM sync_conflicts WHERE diff_hash = ?", (conflict.diff_hash,)
                ).fetchone()
                if existing:
                    return existing["id"]

            conn.execute(
                """INSERT INTO sync_conflicts
                   (id, owner_id, kind, record_id, local_version, cloud_version,
                    resolution, resolved_at, policy_decision, diff_hash)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conflict.id,
                    self._host.owner_id,
                    conflict.kind.value,
                    conflict.record_id,
                    json.dumps(conflict.local_version, default=str),
                    json.dumps(conflict.cloud_version, default=str),
                    conflict.resolution,
                    conflict.resolved_at.isoformat(),
                    conflict.policy_decision,
                    conflict.diff_hash,
                ),
            )
            conn.commit()
        return conflict.id

    def get_sync_conflicts(self, limit: int = 100) -> List[SyncConflict]:
        """Recent conflict history, newest first."""
        with self._host._connect() as conn:
            rows = conn.execute(
                """SELECT id, kind, record_id, local_version, cloud_version, resolution,
                          resolved_at, policy_decision, diff_hash
                   FROM sync_conflicts
                   WHERE owner_id = ?
                   ORDER BY resolved_at DESC
                   LIMIT ?""",
                (self._host.owner_id, limit),
            ).fetchall()
        return [
            SyncConflict(
                id=row["id"],
                kind=EntityKind(row["kind"]),
                record_id=row["record_id"],
                local_version=json.loads(row["local_version"]),
                cloud_version=json.loads(row["cloud_version"]),
                resolution=row["resolution"],
                resolved_at=datetime.fromisoformat(row["resolved_at"]),
                policy_decision=row["policy_decision"],
                diff_hash=row["diff_hash"],
            )
            for row in rows
        ]

    def clear_sync_conflicts(self, before: Optional[datetime] = None) -> int:
        with self._host._connect() as conn:
            if before:
                cursor = conn.execute(
                    "DELETE FROM sync_conflicts WHERE owner_id = ? AND resolved_at < ?",
                    (self._host.owner_id, before.isoformat()),
                )
            else:
                cursor = conn.execute(
                    "DELETE FROM sync_conflicts WHERE owner_id = ?", (self._host.owner_id,)
                )
            conn.commit()
            return cursor.rowcount


def record_to_dict(record: Any) -> Dict[str, Any]:
    """Snapshot a record for conflict storage, without attached children."""
    snapshot = asdict(record)
    snapshot.pop("notes", None)
    snapshot.pop("owner_id", None)
    return snapshot
