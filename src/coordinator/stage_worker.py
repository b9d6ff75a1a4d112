"""
Stage Worker for one tier.

- Drains its tier's queue on a single long-lived thread
- Invokes the tier's Reconciler with a bounded per-call timeout
- Hands failures and explicit requeues to the RetryController
- Reports outcomes through the completion callback

Reconciliation within a tier is strictly sequential. Concurrency exists
only across tiers and across retry timers. A call that overruns its
timeout is reported as a failure and signalled through its
ReconcileContext, and the worker takes no further item until that call
has returned.

What StageWorker MUST NOT do:
- Touch pending sets directly (Coordinator's responsibility)
- Cap retries
- Abort an in-flight reconcile call on shutdown
"""

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from .entities import (
    ObjectRef,
    ReconcileOutcome,
    ReconcileResult,
    Tier,
    WorkerState,
)
from .errors import ReconcileTimeoutError
from .retry_controller import RetryController
from .work_queue import WorkQueue


logger = logging.getLogger(__name__)


class Reconciler(Protocol):
    """Capability that reconciles one object against the managed system."""

    def reconcile(self, ref: ObjectRef) -> ReconcileResult:
        """
        Reconcile a single object.

        Must be idempotent: the same ref may be reconciled any number of
        times. Raising is equivalent to returning ReconcileResult.failure.
        Long-running implementations should poll current_context() and
        return once it is cancelled.
        """
        ...


CompletionCallback = Callable[[ObjectRef, bool], None]


class ReconcileContext:
    """
    Deadline and cancellation signal of one reconcile call.

    The worker sets `cancelled` when the call overruns its timeout.
    Reconcilers read it through current_context() from the calling thread.
    """

    def __init__(self, ref: ObjectRef, timeout: float):
        self.ref = ref
        self.deadline = time.monotonic() + timeout
        self.cancelled = threading.Event()

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self.deadline - time.monotonic())

    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


_local = threading.local()


def current_context() -> Optional[ReconcileContext]:
    """Context of the reconcile call running on this thread, if any."""
    return getattr(_local, "context", None)


class StageWorker:
    """
    Pulls refs from one tier queue and reconciles them.

    Loop per item:
    1. Wait for a previous timed-out call to return, if any
    2. Wait for a ref or the shutdown signal (poll_interval granularity)
    3. Invoke reconciler with reconcile_timeout
    4. SUCCESS → on_complete(ref, True)
       FAILURE → schedule retry after the fixed backoff, on_complete(ref, False)
       REQUEUE → schedule retry after the requested delay, on_complete(ref, False)
    5. Back to IDLE
    """

    def __init__(
        self,
        tier: Tier,
        work_queue: WorkQueue,
        retry_controller: RetryController,
        reconcile_timeout: float,
        poll_interval: float = 0.5,
    ):
        self.tier = tier
        self.work_queue = work_queue
        self.retry_controller = retry_controller
        self.reconcile_timeout = reconcile_timeout
        self.poll_interval = poll_interval

        self._state = WorkerState.STOPPED
        self._reconciler: Optional[Reconciler] = None
        self._on_complete: Optional[CompletionCallback] = None
        self._current: Optional[ObjectRef] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        # Helper thread of a call that overran its timeout
        self._straggler: Optional[threading.Thread] = None
        self._processed = 0

    @property
    def name(self) -> str:
        return f"tier{int(self.tier)}-worker"

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def current(self) -> Optional[ObjectRef]:
        """Ref being reconciled right now, if any."""
        return self._current

    @property
    def processed(self) -> int:
        """Number of reconcile attempts made."""
        return self._processed

    def set_reconciler(self, reconciler: Optional[Reconciler]) -> None:
        self._reconciler = reconciler

    def set_on_complete(self, callback: CompletionCallback) -> None:
        """Set the callback notified after every reconcile attempt."""
        self._on_complete = callback

    # =========================================================================
    # Single Item
    # =========================================================================

    def process_one(self, ref: ObjectRef, stop_event: threading.Event) -> ReconcileResult:
        """
        Reconcile one ref and apply the outcome.

        Returns:
            The ReconcileResult that was applied
        """
        self._state = WorkerState.RECONCILING
        self._current = ref
        try:
            logger.info(f"Processing Tier-{int(self.tier)} reconciliation: {ref}")
            result = self._invoke(ref)
            self._processed += 1

            if result.succeeded:
                self._notify(ref, True)
            elif result.outcome is ReconcileOutcome.REQUEUE:
                logger.info(
                    f"{ref} requested requeue after {result.requeue_after}s"
                )
                self.retry_controller.schedule(ref, stop_event, delay=result.requeue_after)
                self._notify(ref, False)
            else:
                logger.error(
                    f"Tier-{int(self.tier)} reconciliation failed for {ref}: {result.error}"
                )
                self.retry_controller.schedule(ref, stop_event)
                self._notify(ref, False)

            return result
        finally:
            self._current = None
            self._state = WorkerState.IDLE

    def _invoke(self, ref: ObjectRef) -> ReconcileResult:
        """
        Call the reconciler on a helper thread bounded by reconcile_timeout.

        A call that overruns is cancelled through its context and reported
        as a failure. Its thread is kept as the straggler, and no other call
        starts on this tier until it has returned.
        """
        if self._straggler is not None:
            self._straggler.join()
            self._straggler = None

        context = ReconcileContext(ref, self.reconcile_timeout)
        outcome: list[ReconcileResult] = []

        def call():
            _local.context = context
            try:
                result = self._reconciler.reconcile(ref)
                if result is None:
                    result = ReconcileResult.success()
                outcome.append(result)
            except Exception as e:
                outcome.append(ReconcileResult.failure(e))
            finally:
                _local.context = None

        caller = threading.Thread(target=call, name=f"reconcile-{ref}", daemon=True)
        caller.start()
        caller.join(timeout=self.reconcile_timeout)

        if caller.is_alive():
            context.cancelled.set()
            self._straggler = caller
            logger.warning(
                f"Reconcile of {ref} exceeded {self.reconcile_timeout}s, cancellation signalled"
            )
            return ReconcileResult.failure(ReconcileTimeoutError(ref, self.reconcile_timeout))
        if not outcome:
            return ReconcileResult.failure(ReconcileTimeoutError(ref, self.reconcile_timeout))
        return outcome[0]

    def _straggler_running(self) -> bool:
        """
        Wait up to one poll interval for a timed-out call to return.

        Returns:
            True while that call is still running
        """
        straggler = self._straggler
        if straggler is None:
            return False

        straggler.join(timeout=self.poll_interval)
        if straggler.is_alive():
            return True

        self._straggler = None
        logger.info(f"{self.name}: timed-out call {straggler.name} returned")
        return False

    def _notify(self, ref: ObjectRef, success: bool) -> None:
        if self._on_complete is None:
            return
        try:
            self._on_complete(ref, success)
        except Exception as e:
            logger.error(f"Error in completion callback for {ref}: {e}", exc_info=True)

    # =========================================================================
    # Worker Loop
    # =========================================================================

    def start(self, stop_event: threading.Event) -> None:
        """Run the worker loop on a background thread until stop_event is set."""
        if self.is_alive():
            raise RuntimeError(f"{self.name} is already running")

        self._stop_event = stop_event
        self._state = WorkerState.IDLE
        self._thread = threading.Thread(
            target=self._run,
            args=(stop_event,),
            name=self.name,
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the worker thread to exit.

        Returns:
            True if the thread is gone
        """
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning(f"{self.name} did not stop within {timeout}s")
            return False
        self._thread = None
        return True

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, stop_event: threading.Event) -> None:
        logger.info(f"{self.name} started")

        while not stop_event.is_set():
            if self._straggler_running():
                self._state = WorkerState.RECONCILING
                continue

            self._state = WorkerState.DEQUEUING
            ref = self.work_queue.take(timeout=self.poll_interval)
            if ref is None:
                self._state = WorkerState.IDLE
                continue

            if stop_event.is_set():
                # Leave it for the next start()
                self.work_queue.offer(ref)
                break

            if self._reconciler is None:
                logger.warning(f"No Tier-{int(self.tier)} reconciler set, discarding {ref}")
                self._state = WorkerState.IDLE
                continue

            try:
                self.process_one(ref, stop_event)
            except Exception as e:
                logger.error(f"Error in {self.name} loop: {e}", exc_info=True)

        self._state = WorkerState.STOPPED
        logger.info(f"{self.name} stopped")
