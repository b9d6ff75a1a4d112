"""
Bounded work queue for one tier.

Multi-producer, single-consumer. Enqueue is non-blocking: when the queue
is full the attempt is dropped and logged (best-effort, at-most-once per
attempt). The ref stays in its PendingTracker, so a later cascade can
offer it again.
"""

import logging
import queue
import threading
from typing import Optional

from .entities import ObjectRef, Tier
from .errors import QueueSaturatedError


logger = logging.getLogger(__name__)


class WorkQueue:
    """FIFO of refs awaiting reconciliation at a single tier."""

    def __init__(self, tier: Tier, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.tier = tier
        self.capacity = capacity
        self._queue: "queue.Queue[ObjectRef]" = queue.Queue(maxsize=capacity)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    def put(self, ref: ObjectRef) -> None:
        """
        Enqueue without blocking.

        Raises:
            QueueSaturatedError: If the queue is at capacity
        """
        try:
            self._queue.put_nowait(ref)
        except queue.Full:
            raise QueueSaturatedError(int(self.tier), self.capacity) from None

    def offer(self, ref: ObjectRef) -> bool:
        """
        Enqueue without blocking, dropping the attempt if saturated.

        Returns:
            True if enqueued, False if dropped
        """
        try:
            self.put(ref)
        except QueueSaturatedError:
            with self._dropped_lock:
                self._dropped += 1
            logger.warning(
                f"Tier-{int(self.tier)} reconcile queue full, dropping request {ref}"
            )
            return False
        return True

    def take(self, timeout: Optional[float] = None) -> Optional[ObjectRef]:
        """
        Dequeue the next ref.

        Args:
            timeout: Seconds to wait; None blocks until an item arrives

        Returns:
            The ref, or None if nothing arrived within timeout
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    @property
    def dropped(self) -> int:
        """Number of enqueue attempts dropped on saturation."""
        with self._dropped_lock:
            return self._dropped

    def drain(self) -> list[ObjectRef]:
        """Remove and return everything currently queued."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items
