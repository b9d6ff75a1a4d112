"""
Coordinator Test Fixtures.

Base fixtures:
  - Mocked clock at fixed time
  - Fast settings (short backoff, poll and sweep intervals)
  - Scripted reconcilers that record every call

Background-thread tests poll with wait_until instead of sleeping a fixed
amount.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional

import pytest

from src.coordinator import (
    Coordinator,
    CoordinatorSettings,
    ObjectRef,
    ReconcileResult,
    Tier,
)


FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def __call__(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)


class ScriptedReconciler:
    """
    Reconciler test double.

    Returns the result scripted for a ref name (success by default),
    records every call, and can block until released.
    """

    def __init__(self):
        self.calls: list[ObjectRef] = []
        self._results: dict[str, list] = {}
        self._default: Callable[[ObjectRef], ReconcileResult] = lambda ref: ReconcileResult.success()
        self._lock = threading.Lock()
        self.gate: Optional[threading.Event] = None

    def script(self, name: str, *results) -> None:
        """
        Queue results for ref name. Each call consumes one; the last one
        repeats. An exception instance is raised instead of returned.
        """
        self._results[name] = list(results)

    def set_default(self, factory: Callable[[ObjectRef], ReconcileResult]) -> None:
        self._default = factory

    def reconcile(self, ref: ObjectRef) -> ReconcileResult:
        with self._lock:
            self.calls.append(ref)
            scripted = self._results.get(ref.name)
            if scripted:
                result = scripted.pop(0) if len(scripted) > 1 else scripted[0]
            else:
                result = None

        if self.gate is not None:
            self.gate.wait()

        if result is None:
            return self._default(ref)
        if isinstance(result, BaseException):
            raise result
        return result

    def call_count(self, name: Optional[str] = None) -> int:
        with self._lock:
            if name is None:
                return len(self.calls)
            return sum(1 for ref in self.calls if ref.name == name)

    def called_names(self) -> list[str]:
        with self._lock:
            return [ref.name for ref in self.calls]


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def role(name: str, domain: str = "east") -> ObjectRef:
    return ObjectRef(domain=domain, tier=Tier.TIER1, name=name)


def grant(name: str, domain: str = "east") -> ObjectRef:
    return ObjectRef(domain=domain, tier=Tier.TIER2, name=name)


def user(name: str, domain: str = "east") -> ObjectRef:
    return ObjectRef(domain=domain, tier=Tier.TIER3, name=name)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def fast_settings() -> CoordinatorSettings:
    """Settings with intervals short enough for threaded tests."""
    return CoordinatorSettings(
        queue_capacity=100,
        reconcile_timeout=2.0,
        retry_backoff=0.05,
        ledger_retention=3600,
        ledger_sweep_interval=0.05,
        poll_interval=0.01,
        shutdown_grace=2.0,
    )


@pytest.fixture
def coordinator(fast_settings: CoordinatorSettings, mock_clock: MockClock) -> Coordinator:
    """A coordinator that is wired but not started (queues can be inspected)."""
    return Coordinator(fast_settings, clock=mock_clock)


@pytest.fixture
def reconcilers() -> dict[Tier, ScriptedReconciler]:
    return {tier: ScriptedReconciler() for tier in Tier}


@pytest.fixture
def running_coordinator(
    coordinator: Coordinator,
    reconcilers: dict[Tier, ScriptedReconciler],
) -> Generator[Coordinator, None, None]:
    """A started coordinator with scripted reconcilers; stopped on teardown."""
    coordinator.set_reconcilers(
        tier1=reconcilers[Tier.TIER1],
        tier2=reconcilers[Tier.TIER2],
        tier3=reconcilers[Tier.TIER3],
    )
    coordinator.start()

    yield coordinator

    for reconciler in reconcilers.values():
        if reconciler.gate is not None:
            reconciler.gate.set()
    coordinator.stop()
