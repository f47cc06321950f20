"""The synchronization engine: pull, merge-down, diff-up, push, checkpoint."""

from .changeset import ChangeSetBuilder
from .clock import SyncClock, compute_next_checkpoint
from .coordinator import SyncCoordinator
from .dispatch import MutationDispatcher
from .reconcile import ReconciliationEngine

__all__ = [
    "ChangeSetBuilder",
    "MutationDispatcher",
    "ReconciliationEngine",
    "SyncClock",
    "SyncCoordinator",
    "compute_next_checkpoint",
]
