"""
Tiered Reconcile Coordinator Core Module.

Orders reconciliation of three dependent object tiers per domain:
- Tier-1 has no prerequisites
- Tier-2 waits for every Tier-1 object of its domain
- Tier-3 waits for Tier-1 and Tier-2
"""

from .entities import (
    Tier,
    ObjectRef,
    ReconcileOutcome,
    ReconcileResult,
    WorkerState,
)
from .errors import (
    CoordinatorError,
    AlreadyStartedError,
    QueueSaturatedError,
    ReconcileTimeoutError,
    TierMismatchError,
    ScopeResolutionError,
    WorkersStillRunningError,
)
from .config import CoordinatorSettings
from .pending import PendingTracker
from .work_queue import WorkQueue
from .retry_controller import RetryController
from .stage_worker import StageWorker, Reconciler, ReconcileContext, current_context
from .ledger import CompletionLedger, LedgerSweeper
from .coordinator import Coordinator
from .scope import ScopeResolver, KindScopeResolver, route

__all__ = [
    # Entities
    "Tier",
    "ObjectRef",
    "ReconcileOutcome",
    "ReconcileResult",
    "WorkerState",
    # Errors
    "CoordinatorError",
    "AlreadyStartedError",
    "QueueSaturatedError",
    "ReconcileTimeoutError",
    "TierMismatchError",
    "ScopeResolutionError",
    "WorkersStillRunningError",
    # Config
    "CoordinatorSettings",
    # Bookkeeping
    "PendingTracker",
    "WorkQueue",
    "CompletionLedger",
    "LedgerSweeper",
    # Workers
    "StageWorker",
    "Reconciler",
    "ReconcileContext",
    "current_context",
    "RetryController",
    # Coordinator
    "Coordinator",
    # Scope
    "ScopeResolver",
    "KindScopeResolver",
    "route",
]
