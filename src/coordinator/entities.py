"""
Coordinator Domain Entities.

- Tier: ordered class of managed object (Tier-1 → Tier-2 → Tier-3)
- ObjectRef: single schedulable unit, immutable
- ReconcileResult: what a Reconciler reports for one attempt
- WorkerState: StageWorker lifecycle states
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


class Tier(IntEnum):
    """
    Provisioning tier.

    Tier-1 objects have no prerequisites, Tier-2 objects need every Tier-1
    object of their domain settled, Tier-3 objects need both lower tiers.
    For access control this is roles → grants → users.
    """

    TIER1 = 1
    TIER2 = 2
    TIER3 = 3

    def prerequisites(self) -> tuple["Tier", ...]:
        """Lower tiers that must be ready before this tier is dispatched."""
        return tuple(t for t in Tier if t < self)

    def next_tier(self) -> Optional["Tier"]:
        """Tier released by this one, or None for the last tier."""
        if self is Tier.TIER3:
            return None
        return Tier(self + 1)


@dataclass(frozen=True)
class ObjectRef:
    """
    Identifies one schedulable unit.

    A ref belongs to exactly one tier for its lifetime. Equality and hashing
    cover all three fields, so the same name in two domains is two refs.
    """

    domain: str
    tier: Tier
    name: str

    def __post_init__(self):
        if not self.domain:
            raise ValueError("ObjectRef.domain must not be empty")
        if not self.name:
            raise ValueError("ObjectRef.name must not be empty")
        # Accept plain ints for convenience, store the enum
        object.__setattr__(self, "tier", Tier(self.tier))

    def __str__(self) -> str:
        return f"{self.domain}/T{int(self.tier)}/{self.name}"


class ReconcileOutcome(str, Enum):
    """Result kinds a Reconciler can report."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    REQUEUE = "REQUEUE"


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of a single reconcile attempt.

    requeue_after is only meaningful for REQUEUE; zero means "use the
    worker's fixed backoff".
    """

    outcome: ReconcileOutcome
    error: Optional[BaseException] = None
    requeue_after: float = 0.0

    @classmethod
    def success(cls) -> "ReconcileResult":
        return cls(outcome=ReconcileOutcome.SUCCESS)

    @classmethod
    def failure(cls, error: BaseException) -> "ReconcileResult":
        return cls(outcome=ReconcileOutcome.FAILURE, error=error)

    @classmethod
    def requeue(cls, delay: float = 0.0) -> "ReconcileResult":
        return cls(outcome=ReconcileOutcome.REQUEUE, requeue_after=max(delay, 0.0))

    @property
    def succeeded(self) -> bool:
        return self.outcome is ReconcileOutcome.SUCCESS


class WorkerState(str, Enum):
    """StageWorker lifecycle states."""

    IDLE = "IDLE"
    DEQUEUING = "DEQUEUING"
    RECONCILING = "RECONCILING"
    STOPPED = "STOPPED"
