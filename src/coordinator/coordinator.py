"""
Coordinator - ordering engine for tiered reconciliation.

Wires together, per tier:
- PendingTracker (outstanding refs per domain)
- WorkQueue (bounded, drop-on-full)
- StageWorker (sequential reconcile loop)
- RetryController (fixed-backoff re-enqueue)

plus a CompletionLedger with its periodic sweep.

Ordering rule: within one domain a Tier-2 ref is dispatched only once
Tier-1 is ready, and a Tier-3 ref only once Tier-1 and Tier-2 are ready.
"Ready" means the tier's pending set for the domain is empty or absent.
Domains never gate each other.

Usage:
    coordinator = Coordinator(settings)
    coordinator.set_reconcilers(tier1=roles, tier2=grants, tier3=users)
    coordinator.start()
    coordinator.schedule_tier1(ObjectRef("east", Tier.TIER1, "reader"))
    ...
    coordinator.stop()
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from .config import CoordinatorSettings
from .entities import ObjectRef, Tier
from .errors import AlreadyStartedError, TierMismatchError, WorkersStillRunningError
from .ledger import CompletionLedger, LedgerSweeper, utc_now
from .pending import PendingTracker
from .retry_controller import RetryController
from .stage_worker import Reconciler, StageWorker
from .work_queue import WorkQueue


logger = logging.getLogger(__name__)


class Coordinator:
    """
    Schedules tiered work per domain and releases blocked tiers on completion.

    Schedule and completion calls are synchronous, non-blocking and safe
    from any number of threads. No code path holds two tiers' locks at
    once: readiness checks and cascade snapshots each take a single
    tracker lock and release it before the next one is taken.
    """

    def __init__(
        self,
        settings: Optional[CoordinatorSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize Coordinator with one pending set, queue and worker per tier.

        Args:
            settings: Tunables; defaults apply when omitted
            clock: Time source for the completion ledger
        """
        self.settings = settings or CoordinatorSettings()

        self.pending_sets: dict[Tier, PendingTracker] = {}
        self.queues: dict[Tier, WorkQueue] = {}
        self.retry_controllers: dict[Tier, RetryController] = {}
        self.workers: dict[Tier, StageWorker] = {}

        for tier in Tier:
            self.pending_sets[tier] = PendingTracker(tier)
            work_queue = WorkQueue(tier, self.settings.queue_capacity)
            retry = RetryController(work_queue, self.settings.retry_backoff)
            worker = StageWorker(
                tier=tier,
                work_queue=work_queue,
                retry_controller=retry,
                reconcile_timeout=self.settings.reconcile_timeout,
                poll_interval=self.settings.poll_interval,
            )
            worker.set_on_complete(self.on_complete)
            self.queues[tier] = work_queue
            self.retry_controllers[tier] = retry
            self.workers[tier] = worker

        self.ledger = CompletionLedger(self.settings.ledger_retention, clock=clock)
        self.sweeper = LedgerSweeper(self.ledger, self.settings.ledger_sweep_interval)

        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._started = False

    def set_reconcilers(
        self,
        tier1: Optional[Reconciler] = None,
        tier2: Optional[Reconciler] = None,
        tier3: Optional[Reconciler] = None,
    ) -> None:
        """Set the Reconciler capability for each tier."""
        self.workers[Tier.TIER1].set_reconciler(tier1)
        self.workers[Tier.TIER2].set_reconciler(tier2)
        self.workers[Tier.TIER3].set_reconciler(tier3)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """
        Spawn the three stage workers and the ledger sweep.

        Raises:
            AlreadyStartedError: If already started; running tasks are untouched
            WorkersStillRunningError: If a worker or the sweep of the previous
                run has not exited yet; nothing is started
        """
        with self._lifecycle_lock:
            if self._started:
                raise AlreadyStartedError()

            draining = [w.name for w in self.workers.values() if w.is_alive()]
            if self.sweeper.is_alive():
                draining.append("ledger-sweeper")
            if draining:
                raise WorkersStillRunningError(draining)

            logger.info("Starting coordinator...")
            self._stop_event = threading.Event()
            for worker in self.workers.values():
                worker.start(self._stop_event)
            self.sweeper.start(self._stop_event)
            self._started = True
            logger.info("Coordinator started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal shutdown and wait for background tasks to exit.

        In-flight reconcile calls are not aborted; the wait for each worker
        is bounded by timeout (settings.shutdown_grace by default).
        """
        with self._lifecycle_lock:
            if not self._started:
                return

            logger.info("Stopping coordinator...")
            self._stop_event.set()
            self._started = False

        grace = self.settings.shutdown_grace if timeout is None else timeout
        for worker in self.workers.values():
            worker.join(timeout=grace)
        self.sweeper.join(timeout=grace)
        logger.info("Coordinator stopped")

    @property
    def is_running(self) -> bool:
        with self._lifecycle_lock:
            return self._started

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule(self, ref: ObjectRef) -> bool:
        """
        Route ref to the schedule entry point of its tier.

        Returns:
            True if ref was enqueued now, False if it is parked or dropped
        """
        if ref.tier is Tier.TIER1:
            return self.schedule_tier1(ref)
        if ref.tier is Tier.TIER2:
            return self.schedule_tier2(ref)
        return self.schedule_tier3(ref)

    def schedule_tier1(self, ref: ObjectRef) -> bool:
        """Record a Tier-1 ref and enqueue it immediately (no prerequisite)."""
        self._check_tier(ref, Tier.TIER1)
        self.pending_sets[Tier.TIER1].add(ref)
        return self.queues[Tier.TIER1].offer(ref)

    def schedule_tier2(self, ref: ObjectRef) -> bool:
        """Record a Tier-2 ref; enqueue only if Tier-1 is ready for its domain."""
        self._check_tier(ref, Tier.TIER2)
        return self._schedule_gated(ref)

    def schedule_tier3(self, ref: ObjectRef) -> bool:
        """Record a Tier-3 ref; enqueue only if Tier-1 and Tier-2 are ready."""
        self._check_tier(ref, Tier.TIER3)
        return self._schedule_gated(ref)

    def _schedule_gated(self, ref: ObjectRef) -> bool:
        self.pending_sets[ref.tier].add(ref)

        if not self.is_ready(ref.domain, *ref.tier.prerequisites()):
            logger.debug(f"Parked {ref}: prerequisites not ready for {ref.domain}")
            return False
        return self.queues[ref.tier].offer(ref)

    # =========================================================================
    # Completion
    # =========================================================================

    def on_complete(self, ref: ObjectRef, success: bool) -> None:
        """Route a completion report to the entry point of ref's tier."""
        if ref.tier is Tier.TIER1:
            self.on_tier1_complete(ref, success)
        elif ref.tier is Tier.TIER2:
            self.on_tier2_complete(ref, success)
        else:
            self.on_tier3_complete(ref, success)

    def on_tier1_complete(self, ref: ObjectRef, success: bool) -> None:
        """
        Tier-1 report. On success, emptying Tier-1 for the domain releases
        pending Tier-2, and Tier-3 too when Tier-2 is already ready.
        """
        self._check_tier(ref, Tier.TIER1)
        if self._settle(ref, success):
            self._cascade(ref.tier, ref.domain)

    def on_tier2_complete(self, ref: ObjectRef, success: bool) -> None:
        """
        Tier-2 report. On success, emptying Tier-2 releases pending Tier-3,
        provided Tier-1 is ready as well.
        """
        self._check_tier(ref, Tier.TIER2)
        if self._settle(ref, success):
            self._cascade(ref.tier, ref.domain)

    def on_tier3_complete(self, ref: ObjectRef, success: bool) -> None:
        """Tier-3 report. Nothing depends on Tier-3."""
        self._check_tier(ref, Tier.TIER3)
        self._settle(ref, success)

    def _settle(self, ref: ObjectRef, success: bool) -> bool:
        """
        Apply a completion report to pending state and the ledger.

        Returns:
            True if a pending ref was cleared and a cascade check is due
        """
        if not success:
            logger.info(f"Reconcile of {ref} not successful, still pending")
            return False

        removed = self.pending_sets[ref.tier].remove(ref)
        self.ledger.record(ref)
        if not removed:
            logger.debug(f"Success reported for {ref} which was not pending")
            return False

        logger.info(f"Reconciled {ref}")
        return True

    # =========================================================================
    # Readiness and Cascade
    # =========================================================================

    def is_ready(self, domain: str, *tiers: Tier) -> bool:
        """
        True when every given tier has nothing pending for domain.

        Each tier is checked under its own lock in turn; this is a snapshot,
        not a transaction across tiers.
        """
        return all(self.pending_sets[tier].is_ready(domain) for tier in tiers)

    def _cascade(self, completed: Tier, domain: str) -> None:
        """
        Release the tiers above completed, lowest first, for as long as each
        one's prerequisites are ready for domain.
        """
        tier = completed.next_tier()
        while tier is not None and self.is_ready(domain, *tier.prerequisites()):
            self._flush(tier, domain)
            tier = tier.next_tier()

    def _flush(self, tier: Tier, domain: str) -> int:
        """
        Offer every pending ref of tier for domain to its queue.

        Stops at the first saturated offer; the rest stay pending for the
        next trigger.

        Returns:
            Number of refs enqueued
        """
        refs = self.pending_sets[tier].snapshot(domain)
        if not refs:
            return 0

        enqueued = 0
        for ref in refs:
            if not self.queues[tier].offer(ref):
                logger.warning(
                    f"Cascade into Tier-{int(tier)} for {domain} stopped: "
                    f"{len(refs) - enqueued} refs left pending"
                )
                break
            enqueued += 1

        logger.info(f"Cascade released {enqueued} Tier-{int(tier)} refs for {domain}")
        return enqueued

    @staticmethod
    def _check_tier(ref: ObjectRef, expected: Tier) -> None:
        if ref.tier is not expected:
            raise TierMismatchError(ref, int(expected))

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def pending(self, tier: Tier, domain: str) -> list[ObjectRef]:
        """Pending refs of tier for domain, in scheduling order."""
        return self.pending_sets[Tier(tier)].snapshot(domain)

    def stats(self) -> dict:
        """
        Get coordinator statistics.

        Returns:
            Dict with is_running, ledger_size and per-tier counters
        """
        tiers = {}
        for tier in Tier:
            current = self.workers[tier].current
            tiers[f"tier{int(tier)}"] = {
                "pending": self.pending_sets[tier].count(),
                "domains": len(self.pending_sets[tier].domains()),
                "queued": self.queues[tier].qsize(),
                "dropped": self.queues[tier].dropped,
                "active_retries": self.retry_controllers[tier].active,
                "retries_scheduled": self.retry_controllers[tier].scheduled,
                "processed": self.workers[tier].processed,
                "worker_state": self.workers[tier].state.value,
                "current": str(current) if current else None,
            }
        return {
            "is_running": self.is_running,
            "ledger_size": len(self.ledger),
            "tiers": tiers,
        }
