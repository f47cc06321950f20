"""Sync commands for the notesync CLI."""

import json
import logging
from datetime import datetime, timezone

from notesync.config import SyncSettings
from notesync.session import Session
from notesync.storage import SQLiteStorage
from notesync.sync import SyncClock, SyncCoordinator
from notesync.types import SYNC_DEAD_LETTER, SyncReport, SyncStatus

logger = logging.getLogger(__name__)

RECENT_CONFLICTS = 5


def _format_ts(ts):
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()[:19]


def _print_report(report: SyncReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    icon = "✓" if report.success else "✗"
    print(f"{icon} Sync {report.status.value}")
    if report.status in (SyncStatus.COMPLETED, SyncStatus.FAILED):
        print(f"  Pulled: {report.pulled}")
        print(f"  Pushed: {report.pushed}")
    if report.failed_writes:
        print(f"⚠️  {len(report.failed_writes)} write(s) failed and were queued for retry:")
        for outcome in report.failed_writes[:10]:
            print(f"   {outcome.kind.value} {outcome.record_id}: {outcome.error}")
    if report.conflicts:
        print(f"  Conflicts resolved: {len(report.conflicts)}")
    for error in report.errors:
        print(f"  Error: {error}")
    if report.checkpoint_after is not None:
        print(f"  Checkpoint: {_format_ts(report.checkpoint_after)}")


def cmd_sync(args, session: Session, storage: SQLiteStorage, settings: SyncSettings) -> int:
    """Handle sync subcommands. Returns the process exit code."""
    as_json = getattr(args, "json", False)

    if args.sync_action == "run":
        coordinator = SyncCoordinator(session, storage, settings=settings)
        report = coordinator.run_sync()
        _print_report(report, as_json)
        if not session.is_authenticated and not as_json:
            print("  Set NOTESYNC_AUTH_TOKEN or add auth_token to ~/.notesync/credentials.json")
        return 0 if report.success else 1

    if args.sync_action == "status":
        clock = SyncClock(storage, storage.owner_id)
        checkpoint = clock.get_checkpoint()
        queue = storage.get_queue_status()
        conflicts = storage.get_sync_conflicts(limit=RECENT_CONFLICTS)
        status_data = {
            "owner_id": storage.owner_id,
            "backend_url": session.backend_url,
            "authenticated": session.is_authenticated,
            "checkpoint": checkpoint,
            "merge_policy": settings.merge_policy.value,
            "checkpoint_policy": settings.checkpoint_policy.value,
            "pending": queue["pending"],
            "dead_letter": queue["dead_letter"],
            "pending_by_kind": queue["by_kind"],
            "recent_conflicts": [
                {
                    "kind": c.kind.value,
                    "record_id": c.record_id,
                    "resolution": c.resolution,
                    "policy_decision": c.policy_decision,
                    "resolved_at": c.resolved_at.isoformat(),
                }
                for c in conflicts
            ],
        }
        if as_json:
            print(json.dumps(status_data, indent=2, default=str))
            return 0

        print("Sync Status")
        print("=" * 50)
        print()
        conn_icon = "🟢" if session.is_authenticated and session.backend_url else "🔴"
        print(f"{conn_icon} Backend: {session.backend_url or 'not configured'}")
        print(f"   User: {storage.owner_id}")
        print(f"   Policies: merge={settings.merge_policy.value}, checkpoint={settings.checkpoint_policy.value}")
        print()
        print(f"🕐 Last sync checkpoint: {_format_ts(checkpoint)}")
        print(f"📤 Pending writes: {queue['pending']}")
        if queue["dead_letter"]:
            print(f"🔴 Dead-lettered: {queue['dead_letter']}")
            print("   These writes failed repeatedly. Use `notesync sync requeue` to retry.")
        if conflicts:
            print()
            print("Recent conflicts:")
            for c in conflicts:
                print(f"   {c.kind.value} {c.record_id}: {c.resolution} ({c.policy_decision})")
        return 0

    if args.sync_action == "pending":
        pending = storage.get_pending_writes()
        dead = storage.get_dead_letters()
        if as_json:
            entries = [
                {
                    "id": e.id,
                    "kind": e.kind.value,
                    "record_id": e.record_id,
                    "dt_modify": e.dt_modify,
                    "state": "dead_letter" if e.state == SYNC_DEAD_LETTER else "pending",
                    "retry_count": e.retry_count,
                    "last_error": e.last_error,
                    "last_attempt_at": e.last_attempt_at,
                }
                for e in pending + dead
            ]
            print(json.dumps(entries, indent=2, default=str))
            return 0

        if not pending and not dead:
            print("✓ No pending writes")
            return 0
        for label, entries in (("Pending", pending), ("Dead-lettered", dead)):
            if not entries:
                continue
            print(f"{label} ({len(entries)}):")
            for e in entries:
                print(f"  [{e.id}] {e.kind.value} {e.record_id} (retries: {e.retry_count})")
                if e.last_error:
                    print(f"       {e.last_error[:120]}")
        return 0

    if args.sync_action == "requeue":
        count = storage.requeue_dead_letters(args.id or None)
        if as_json:
            print(json.dumps({"requeued": count}))
        else:
            print(f"✓ Requeued {count} dead-lettered write(s)")
        return 0

    logger.error(f"Unknown sync action: {args.sync_action}")
    return 1
