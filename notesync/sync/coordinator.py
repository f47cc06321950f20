"""Sync cycle orchestration.

One ``sync()`` call runs: guard, pull, merge-down, diff-up against the
pre-cycle checkpoint, concurrent push, queue bookkeeping and checkpoint
advance. Cycle-level failures are reported, never raised.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set, Tuple

from notesync.config import SyncSettings, get_settings
from notesync.errors import PullFailure
from notesync.remote.channel import RemoteChannel
from notesync.remote.operations import SYNC
from notesync.session import Session
from notesync.types import (
    ChangeSet,
    EntityKind,
    MergeReport,
    MutationOutcome,
    SyncReport,
    SyncStatus,
    utc_now_ts,
)

from .changeset import ChangeSetBuilder
from .clock import SyncClock
from .dispatch import MutationDispatcher
from .reconcile import ReconciliationEngine

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Entry point for running sync cycles for one session.

    At most one cycle runs at a time per coordinator; an overlapping
    ``sync()`` returns ``status=busy`` immediately.

    Args:
        session: Authenticated identity; a session without a token skips.
        storage: A ``SyncStorage`` (usually ``SQLiteStorage``).
        settings: Engine settings, defaults to ``get_settings()``.
        channel_factory: Builds the remote channel from the session;
            must return an async context manager with ``execute``.
        now_fn: Epoch-second clock used for the ``now`` checkpoint policy.
        sleep: Awaitable sleep used for retry backoff.

    Raises:
        ValueError: If the session names a different owner than ``storage``.
    """

    def __init__(
        self,
        session: Session,
        storage,
        settings: Optional[SyncSettings] = None,
        channel_factory: Optional[Callable[[Session], object]] = None,
        now_fn: Callable[[], int] = utc_now_ts,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self.storage = storage
        self.settings = settings or get_settings()
        if session.owner_id and session.owner_id != storage.owner_id:
            raise ValueError(
                f"Session owner {session.owner_id!r} does not match storage owner {storage.owner_id!r}"
            )
        self.owner_id = storage.owner_id
        self.clock = SyncClock(storage, self.owner_id, now_fn=now_fn)
        self._channel_factory = channel_factory or self._default_channel
        self._sleep = sleep
        self._lock = asyncio.Lock()

    def _default_channel(self, session: Session) -> RemoteChannel:
        return RemoteChannel(session, timeout=self.settings.request_timeout_s)

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_sync(self) -> SyncReport:
        """Blocking wrapper around ``sync()`` for synchronous callers."""
        return asyncio.run(self.sync())

    async def sync(self) -> SyncReport:
        """Run one cycle. Never raises; inspect the returned report."""
        if not self.session.is_authenticated:
            logger.info("No auth token in session; skipping sync")
            return SyncReport(status=SyncStatus.SKIPPED)

        if self._lock.locked():
            logger.warning("Sync already in progress; rejecting overlapping call")
            return SyncReport(status=SyncStatus.BUSY)

        async with self._lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> SyncReport:
        report = SyncReport()
        settings = self.settings
        try:
            checkpoint = await asyncio.to_thread(self.clock.get_checkpoint)
            report.checkpoint_before = checkpoint
            report.checkpoint_after = checkpoint
            logger.info(f"Starting sync for {self.owner_id} from checkpoint {checkpoint}")

            async with self._channel_factory(self.session) as channel:
                merge = await self._pull(channel)
                report.pulled = merge.pulled
                report.conflicts = merge.conflicts

                builder = ChangeSetBuilder(
                    self.storage.users,
                    self.storage.folders,
                    self.storage.notes,
                    pending_source=self.storage.get_pending_writes if settings.replay_pending else None,
                    dead_letter_source=self.storage.get_dead_letter_versions,
                )
                changes = await builder.build(checkpoint, merge.remote_versions)

                dispatcher = MutationDispatcher(
                    channel,
                    self.owner_id,
                    max_concurrency=settings.max_concurrency,
                    retries=settings.mutation_retries,
                    backoff_s=settings.retry_backoff_s,
                    sleep=self._sleep,
                )
                outcomes = await dispatcher.dispatch(changes)

            report.pushed = sum(1 for o in outcomes if o.ok)
            report.failed_writes = [o for o in outcomes if not o.ok]

            dead_lettered = await self._record_outcomes(changes, outcomes, report)

            report.checkpoint_after = await asyncio.to_thread(
                self.clock.advance,
                settings.checkpoint_policy,
                checkpoint,
                [o.dt_modify for o in outcomes if o.ok],
                [
                    o.dt_modify
                    for o in outcomes
                    if not o.ok and (o.kind, o.record_id) not in dead_lettered
                ],
                [dt_modify for _, _, dt_modify in changes.echoes],
            )
        except Exception as e:
            logger.error(f"Sync failed: {e}", exc_info=True)
            report.status = SyncStatus.FAILED
            report.errors.append(str(e))
            report.checkpoint_after = report.checkpoint_before
            return report

        logger.info(
            f"Sync completed: pulled {report.pulled}, pushed {report.pushed}, "
            f"{len(report.failed_writes)} failed, checkpoint {report.checkpoint_after}"
        )
        return report

    async def _pull(self, channel) -> MergeReport:
        engine = ReconciliationEngine(
            self.storage.folders,
            self.storage.notes,
            policy=self.settings.merge_policy,
            max_concurrency=self.settings.max_concurrency,
            conflict_sink=self.storage.save_sync_conflict,
        )
        try:
            snapshot = await channel.execute(SYNC, {"userId": self.owner_id})
            return await engine.merge(snapshot)
        except Exception as e:
            raise PullFailure(f"Pull failed: {e}") from e

    async def _record_outcomes(
        self, changes: ChangeSet, outcomes: List[MutationOutcome], report: SyncReport
    ) -> Set[Tuple[EntityKind, str]]:
        """Update the pending-write queue.

        Bookkeeping errors are reported but do not fail the cycle; the
        writes themselves already happened.

        Returns:
            (kind, id) of failed writes that are now dead-lettered.
        """
        replayed = set(changes.replayed)
        for outcome in outcomes:
            try:
                if outcome.ok:
                    await asyncio.to_thread(
                        self.storage.record_write_success, outcome.kind, outcome.record_id
                    )
                else:
                    await asyncio.to_thread(
                        self.storage.record_write_failure,
                        outcome.kind,
                        outcome.record_id,
                        outcome.dt_modify,
                        outcome.error or "unknown error",
                    )
            except Exception as e:
                logger.error(
                    f"Could not update pending queue for {outcome.kind.value} {outcome.record_id}: {e}",
                    exc_info=True,
                )
                report.errors.append(f"queue update failed for {outcome.record_id}: {e}")

        # A replayed write the remote already holds has landed after all
        for kind, record_id, _ in changes.echoes:
            if (kind, record_id) not in replayed:
                continue
            try:
                await asyncio.to_thread(self.storage.record_write_success, kind, record_id)
            except Exception as e:
                logger.error(f"Could not close pending entry for {kind.value} {record_id}: {e}", exc_info=True)
                report.errors.append(f"queue update failed for {record_id}: {e}")

        for kind, record_id in changes.orphans:
            try:
                await asyncio.to_thread(self.storage.record_write_success, kind, record_id)
            except Exception as e:
                logger.error(f"Could not drop pending entry for {kind.value} {record_id}: {e}", exc_info=True)
                report.errors.append(f"queue update failed for {record_id}: {e}")

        failed = [o for o in outcomes if not o.ok]
        if not failed:
            return set()
        try:
            dead = await asyncio.to_thread(self.storage.get_dead_letter_versions)
        except Exception as e:
            logger.error(f"Could not read dead letter queue: {e}", exc_info=True)
            report.errors.append(f"dead letter lookup failed: {e}")
            return set()
        return {
            (o.kind, o.record_id)
            for o in failed
            if (o.kind, o.record_id) in dead and dead[(o.kind, o.record_id)] == o.dt_modify
        }
