"""
Retry Controller for tier workers.

- Re-offers a failed or requeued ref after a delay
- One short-lived timer thread per retry, exiting after a single attempt
- Timers observe the shutdown signal and give up when it fires

Retries are unconditional and uncapped: a ref that always fails is
re-offered forever until the caller stops scheduling it or the coordinator
stops. Reconcilers must therefore be idempotent.
"""

import logging
import threading
from typing import Optional

from .entities import ObjectRef
from .work_queue import WorkQueue


logger = logging.getLogger(__name__)


class RetryController:
    """
    Schedules delayed re-enqueue attempts onto one tier's queue.

    Backoff is fixed: every failure waits base_delay_seconds. An explicit
    requeue uses the reconciler's delay, or base_delay_seconds when that
    delay is zero.
    """

    def __init__(self, work_queue: WorkQueue, base_delay_seconds: float):
        """
        Initialize RetryController.

        Args:
            work_queue: Queue that retried refs are offered to
            base_delay_seconds: Fixed backoff between attempts
        """
        self.work_queue = work_queue
        self.base_delay_seconds = base_delay_seconds

        self._lock = threading.Lock()
        self._active = 0
        self._scheduled = 0

    def delay_for(self, requested: Optional[float] = None) -> float:
        """Effective delay: the requested one if positive, else the backoff."""
        if requested is not None and requested > 0:
            return requested
        return self.base_delay_seconds

    def schedule(
        self,
        ref: ObjectRef,
        stop_event: threading.Event,
        delay: Optional[float] = None,
    ) -> threading.Thread:
        """
        Re-offer ref after a delay unless shutdown fires first.

        Args:
            ref: The ref to retry
            stop_event: Shared shutdown signal
            delay: Requested delay; None or 0 means the fixed backoff

        Returns:
            The timer thread (already started)
        """
        effective = self.delay_for(delay)
        with self._lock:
            self._active += 1
            self._scheduled += 1

        logger.debug(f"Retry for {ref} scheduled in {effective}s")

        timer = threading.Thread(
            target=self._fire,
            args=(ref, stop_event, effective),
            name=f"retry-{ref}",
            daemon=True,
        )
        timer.start()
        return timer

    def _fire(self, ref: ObjectRef, stop_event: threading.Event, delay: float) -> None:
        try:
            if stop_event.wait(delay):
                logger.debug(f"Shutdown before retry of {ref}, abandoning")
                return
            if self.work_queue.offer(ref):
                logger.info(f"Re-enqueued {ref} after {delay}s")
        finally:
            with self._lock:
                self._active -= 1

    @property
    def active(self) -> int:
        """Timers still waiting to fire."""
        with self._lock:
            return self._active

    @property
    def scheduled(self) -> int:
        """Total retries scheduled since construction."""
        with self._lock:
            return self._scheduled
