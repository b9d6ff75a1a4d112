"""
Pending-work bookkeeping for one tier.

A ref is pending from the moment it is first scheduled until a success is
reported for it. Failed attempts leave it in place. An empty or absent
domain entry is the readiness signal for the next tier.
"""

import threading
from typing import Optional

from .entities import ObjectRef, Tier


class PendingTracker:
    """
    Lock-guarded mapping of domain → ordered set of outstanding refs.

    Every method takes the tracker's own lock and releases it before
    returning. Callers never hold two trackers' locks at once.
    """

    def __init__(self, tier: Tier):
        self.tier = tier
        self._lock = threading.Lock()
        # domain -> refs in scheduling order (dict used as an ordered set)
        self._pending: dict[str, dict[ObjectRef, None]] = {}

    def add(self, ref: ObjectRef) -> bool:
        """
        Record ref as pending for its domain.

        Returns:
            True if newly added, False if it was already pending
        """
        with self._lock:
            refs = self._pending.setdefault(ref.domain, {})
            if ref in refs:
                return False
            refs[ref] = None
            return True

    def remove(self, ref: ObjectRef) -> bool:
        """
        Drop ref from its domain's pending set.

        The domain entry is deleted once it becomes empty.

        Returns:
            True if ref was pending
        """
        with self._lock:
            refs = self._pending.get(ref.domain)
            if refs is None or ref not in refs:
                return False
            del refs[ref]
            if not refs:
                del self._pending[ref.domain]
            return True

    def is_ready(self, domain: str) -> bool:
        """True when nothing is outstanding at this tier for domain."""
        with self._lock:
            return not self._pending.get(domain)

    def snapshot(self, domain: str) -> list[ObjectRef]:
        """Copy of the pending refs for domain, in scheduling order."""
        with self._lock:
            return list(self._pending.get(domain, {}))

    def count(self, domain: Optional[str] = None) -> int:
        with self._lock:
            if domain is not None:
                return len(self._pending.get(domain, {}))
            return sum(len(refs) for refs in self._pending.values())

    def domains(self) -> list[str]:
        with self._lock:
            return list(self._pending)
