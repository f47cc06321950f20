"""Checkpoint bookkeeping.

The checkpoint is the ``dt_modify`` boundary used by the next diff-up:
records modified strictly after it are pushed. Only the latest value is
kept, in ``sync_meta`` under a per-owner key.
"""

import logging
from typing import Callable, Iterable, Optional

from notesync.types import CheckpointPolicy, utc_now_ts

logger = logging.getLogger(__name__)

CHECKPOINT_KEY_PREFIX = "last_sync_ts"


def _present(values: Iterable[Optional[int]]):
    return [v for v in values if v is not None]


def compute_next_checkpoint(
    policy: CheckpointPolicy,
    previous: int,
    now: int,
    confirmed: Iterable[Optional[int]] = (),
    failed: Iterable[Optional[int]] = (),
    echoes: Iterable[Optional[int]] = (),
) -> int:
    """Work out the checkpoint to store at the end of a cycle.

    ``now`` records the wall clock unconditionally. ``high_water_mark``
    advances to the newest ``dt_modify`` known to be on the remote
    (confirmed writes and echo-suppressed records), but stays strictly
    below the oldest failed write so that write is re-detected next
    cycle. Either way the result is never below ``previous``.
    """
    if policy == CheckpointPolicy.NOW:
        return max(previous, now)

    landed = _present(confirmed) + _present(echoes)
    candidate = max(landed) if landed else previous

    failures = _present(failed)
    if failures:
        candidate = min(candidate, min(failures) - 1)

    return max(previous, candidate)


class SyncClock:
    """Reads and advances the last-successful-sync checkpoint of one owner.

    Args:
        state: Anything with ``get_sync_meta`` / ``set_sync_meta``.
        owner_id: The session owner the checkpoint belongs to.
        now_fn: Source of the current epoch-second timestamp.
    """

    def __init__(self, state, owner_id: str, now_fn: Callable[[], int] = utc_now_ts):
        self._state = state
        self.owner_id = owner_id
        self._now_fn = now_fn

    @property
    def key(self) -> str:
        return f"{CHECKPOINT_KEY_PREFIX}:{self.owner_id}"

    def now(self) -> int:
        return int(self._now_fn())

    def get_checkpoint(self) -> int:
        """Stored checkpoint, or 0 for an owner that never synced."""
        raw = self._state.get_sync_meta(self.key)
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable checkpoint {raw!r} for {self.owner_id}; using 0")
            return 0

    def set_checkpoint(self, ts: int) -> None:
        self._state.set_sync_meta(self.key, str(int(ts)))

    def advance(
        self,
        policy: CheckpointPolicy,
        previous: int,
        confirmed: Iterable[Optional[int]] = (),
        failed: Iterable[Optional[int]] = (),
        echoes: Iterable[Optional[int]] = (),
    ) -> int:
        """Apply ``policy`` and persist the result. Returns the stored checkpoint."""
        next_checkpoint = compute_next_checkpoint(
            policy,
            previous,
            self.now(),
            confirmed=confirmed,
            failed=failed,
            echoes=echoes,
        )
        if next_checkpoint != previous:
            self.set_checkpoint(next_checkpoint)
            logger.info(f"Checkpoint advanced {previous} -> {next_checkpoint} ({policy.value})")
        else:
            logger.info(f"Checkpoint unchanged at {previous} ({policy.value})")
        return next_checkpoint
