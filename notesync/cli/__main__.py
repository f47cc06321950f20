"""
notesync CLI - command-line interface for note synchronization.

Usage:
    notesync sync run [--json]
    notesync sync status [--json]
    notesync sync pending [--json]
    notesync sync requeue [--id N]...
"""

import argparse
import logging
import sys

from notesync.cli.commands import cmd_sync
from notesync.config import get_settings
from notesync.session import load_session
from notesync.storage import SQLiteStorage

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notesync",
        description="Synchronize local notes with the remote store",
    )
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Increase log verbosity (-v info, -vv debug)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Sync with remote backend")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    sync_run = sync_sub.add_parser("run", help="Run one sync cycle (pull, merge, push)")
    sync_run.add_argument("--json", "-j", action="store_true")

    sync_status = sync_sub.add_parser("status", help="Show checkpoint, queue and recent conflicts")
    sync_status.add_argument("--json", "-j", action="store_true")

    sync_pending = sync_sub.add_parser("pending", help="List queued writes awaiting retry")
    sync_pending.add_argument("--json", "-j", action="store_true")

    sync_requeue = sync_sub.add_parser("requeue", help="Move dead-lettered writes back to pending")
    sync_requeue.add_argument("--id", type=int, action="append",
                              help="Queue entry ID to requeue (repeatable, default: all)")
    sync_requeue.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        settings = get_settings()
        session = load_session(settings)
        if not session.owner_id:
            logger.error("No user configured. Set NOTESYNC_USER_ID or add user_id to ~/.notesync/credentials.json")
            sys.exit(1)
        storage = SQLiteStorage(
            session.owner_id,
            db_path=settings.db_path,
            max_write_attempts=settings.max_write_attempts,
        )
    except (ValueError, TypeError) as e:
        logger.error(f"Failed to initialize notesync: {e}")
        sys.exit(1)

    try:
        if args.command == "sync":
            code = cmd_sync(args, session, storage, settings)
        else:
            code = 1
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
