"""
Dual-backend synchronization.

Routes reads and writes across the remote and local backends, tracks
pending-sync markers for writes the remote has not confirmed, and replays
them during reconciliation.
"""

from .circuit import CircuitBreaker, CircuitState
from .coordinator import DualBackendCoordinator, ReconcileResult, SyncState
from .pending import PendingOperation, PendingSync, PendingSyncTracker

__all__ = [
    "DualBackendCoordinator",
    "ReconcileResult",
    "SyncState",
    "PendingOperation",
    "PendingSync",
    "PendingSyncTracker",
    "CircuitBreaker",
    "CircuitState",
]
