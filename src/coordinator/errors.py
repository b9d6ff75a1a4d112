"""
Coordinator-specific exceptions.

Only programming errors reach callers. Reconcile failures and queue
saturation are absorbed by the workers and logged.
"""


class CoordinatorError(Exception):
    """Base exception for all coordinator errors."""
    pass


class AlreadyStartedError(CoordinatorError):
    """Raised when start() is called on a running coordinator."""

    def __init__(self):
        super().__init__("Coordinator already started")


class QueueSaturatedError(CoordinatorError):
    """
    Raised by WorkQueue.put when the tier queue is full.

    Public scheduling paths use WorkQueue.offer, which logs and drops
    instead of raising.
    """

    def __init__(self, tier: int, capacity: int):
        self.tier = tier
        self.capacity = capacity
        super().__init__(f"Tier-{tier} queue saturated (capacity={capacity})")


class ReconcileTimeoutError(CoordinatorError):
    """Raised (as a failure value) when a reconcile call exceeds its timeout."""

    def __init__(self, ref, timeout: float):
        self.ref = ref
        self.timeout = timeout
        super().__init__(f"Reconcile of {ref} exceeded {timeout}s")


class TierMismatchError(CoordinatorError):
    """Raised when a ref is handed to an entry point of another tier."""

    def __init__(self, ref, expected_tier: int):
        self.ref = ref
        self.expected_tier = expected_tier
        super().__init__(
            f"{ref} belongs to Tier-{int(ref.tier)}, not Tier-{expected_tier}"
        )


class ScopeResolutionError(CoordinatorError):
    """Raised when a raw object's domain or tier cannot be derived."""
    pass


class WorkersStillRunningError(CoordinatorError):
    """
    Raised by start() while threads from the previous run have not exited.

    This happens when stop() gave up after its grace period with a
    reconcile call still in flight.
    """

    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(f"Previous run still draining: {', '.join(names)}")
