"""Tests for checkpoint computation and persistence."""

import pytest

from notesync.sync.clock import SyncClock, compute_next_checkpoint
from notesync.types import CheckpointPolicy

NOW = CheckpointPolicy.NOW
HWM = CheckpointPolicy.HIGH_WATER_MARK


class TestComputeNextCheckpoint:
    def test_now_policy_records_wall_clock(self):
        assert compute_next_checkpoint(NOW, 50, 1000, confirmed=[100], failed=[150]) == 1000

    def test_now_policy_never_moves_backwards(self):
        assert compute_next_checkpoint(NOW, 2000, 1000) == 2000

    def test_hwm_advances_to_newest_confirmed(self):
        assert compute_next_checkpoint(HWM, 50, 1000, confirmed=[80, 120, 100]) == 120

    def test_hwm_counts_echoes(self):
        assert compute_next_checkpoint(HWM, 50, 1000, confirmed=[80], echoes=[300]) == 300

    def test_hwm_stays_below_earliest_failure(self):
        assert compute_next_checkpoint(HWM, 100, 1000, confirmed=[180], failed=[150, 170]) == 149

    def test_hwm_nothing_pushed_stays_put(self):
        assert compute_next_checkpoint(HWM, 100, 1000) == 100

    def test_hwm_never_below_previous(self):
        # A replayed write older than the checkpoint failed again
        assert compute_next_checkpoint(HWM, 100, 1000, confirmed=[120], failed=[90]) == 100

    def test_hwm_ignores_undated_records(self):
        assert compute_next_checkpoint(HWM, 10, 1000, confirmed=[None, 40], failed=[None]) == 40


class TestSyncClock:
    def test_default_is_zero(self, clock):
        assert clock.get_checkpoint() == 0

    def test_set_and_get(self, clock, storage):
        clock.set_checkpoint(123)
        assert clock.get_checkpoint() == 123
        assert storage.get_sync_meta(clock.key) == "123"

    def test_keyed_by_owner(self, storage):
        SyncClock(storage, "a").set_checkpoint(10)
        assert SyncClock(storage, "b").get_checkpoint() == 0

    def test_unreadable_value_falls_back_to_zero(self, clock, storage):
        storage.set_sync_meta(clock.key, "not-a-number")
        assert clock.get_checkpoint() == 0

    @pytest.mark.parametrize(
        "policy,expected",
        [(NOW, 500), (HWM, 149)],
    )
    def test_advance_persists(self, storage, policy, expected):
        clock = SyncClock(storage, "owner-1", now_fn=lambda: 500)

        result = clock.advance(policy, 100, confirmed=[180], failed=[150])

        assert result == expected
        assert clock.get_checkpoint() == expected

    def test_advance_without_change_keeps_value(self, storage):
        clock = SyncClock(storage, "owner-1", now_fn=lambda: 500)
        clock.set_checkpoint(100)

        assert clock.advance(HWM, 100) == 100
        assert clock.get_checkpoint() == 100
