"""
Completion ledger.

Audit-only record of the last successful reconcile per ref. Entries older
than the retention window are purged by a periodic sweep. Nothing in the
scheduling path reads the ledger.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .entities import ObjectRef


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class CompletionLedger:
    """ObjectRef → timestamp of last recorded success."""

    def __init__(
        self,
        retention_seconds: float,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[ObjectRef, datetime] = {}

    def record(self, ref: ObjectRef) -> datetime:
        """Stamp ref with the current time and return the stamp."""
        stamp = self._clock()
        with self._lock:
            self._entries[ref] = stamp
        return stamp

    def last_success(self, ref: ObjectRef) -> Optional[datetime]:
        with self._lock:
            return self._entries.get(ref)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Purge entries older than the retention window.

        Args:
            now: Reference time; defaults to the ledger's clock

        Returns:
            Number of entries removed
        """
        cutoff = (now or self._clock()) - self.retention
        with self._lock:
            expired = [ref for ref, stamp in self._entries.items() if stamp < cutoff]
            for ref in expired:
                del self._entries[ref]

        if expired:
            logger.debug(f"Ledger sweep removed {len(expired)} entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, ref: ObjectRef) -> bool:
        with self._lock:
            return ref in self._entries


class LedgerSweeper:
    """Background thread that sweeps a ledger on a fixed interval."""

    def __init__(self, ledger: CompletionLedger, interval_seconds: float):
        self.ledger = ledger
        self.interval = interval_seconds
        self._thread: Optional[threading.Thread] = None

    def start(self, stop_event: threading.Event) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(stop_event,),
            name="ledger-sweeper",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the sweep thread to exit.

        Returns:
            True if the thread is gone
        """
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        alive = self._thread.is_alive()
        if not alive:
            self._thread = None
        return not alive

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, stop_event: threading.Event) -> None:
        # wait() returns True once shutdown is signalled
        while not stop_event.wait(self.interval):
            try:
                self.ledger.sweep()
            except Exception as e:
                logger.error(f"Ledger sweep failed: {e}", exc_info=True)
