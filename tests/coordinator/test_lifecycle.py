"""
Lifecycle and End-to-End Tests.

Runs the real worker threads with short intervals:
- start/stop semantics
- no reconcile calls after stop()
- unbounded retry of a permanently failing ref
- tier ordering observed by the reconcilers themselves
"""

import threading
import time

import pytest

from src.coordinator import (
    AlreadyStartedError,
    Coordinator,
    CoordinatorSettings,
    ReconcileResult,
    Tier,
    WorkerState,
    WorkersStillRunningError,
)

from .conftest import ScriptedReconciler, grant, role, user, wait_until


class TestStartStop:

    def test_double_start_fails_and_keeps_running(self, running_coordinator: Coordinator):
        with pytest.raises(AlreadyStartedError):
            running_coordinator.start()
        assert running_coordinator.is_running
        assert all(w.is_alive() for w in running_coordinator.workers.values())

    def test_stop_when_not_started_is_noop(self, coordinator: Coordinator):
        coordinator.stop()
        coordinator.stop()
        assert not coordinator.is_running

    def test_stop_joins_workers(self, coordinator: Coordinator):
        coordinator.start()
        coordinator.stop()

        assert not coordinator.is_running
        for worker in coordinator.workers.values():
            assert not worker.is_alive()
            assert worker.state is WorkerState.STOPPED

    def test_restart_after_stop(self, coordinator: Coordinator):
        reconciler = ScriptedReconciler()
        coordinator.set_reconcilers(tier1=reconciler)

        coordinator.start()
        coordinator.stop()
        coordinator.start()
        try:
            coordinator.schedule_tier1(role("r1"))
            assert wait_until(lambda: reconciler.call_count("r1") == 1)
        finally:
            coordinator.stop()

    def test_restart_refused_while_previous_run_drains(self, mock_clock):
        settings = CoordinatorSettings(
            reconcile_timeout=5.0,
            retry_backoff=0.05,
            ledger_sweep_interval=0.05,
            poll_interval=0.01,
            shutdown_grace=0.1,
        )
        coordinator = Coordinator(settings, clock=mock_clock)
        tier2 = ScriptedReconciler()
        tier2.gate = threading.Event()
        coordinator.set_reconcilers(tier2=tier2)

        coordinator.start()
        coordinator.schedule_tier2(grant("g1"))
        assert wait_until(lambda: tier2.call_count("g1") == 1)

        # The in-flight call outlives the grace period
        coordinator.stop()
        tier2_worker = coordinator.workers[Tier.TIER2]
        assert tier2_worker.is_alive()

        try:
            with pytest.raises(WorkersStillRunningError) as exc_info:
                coordinator.start()
            assert exc_info.value.names == ["tier2-worker"]
            assert not coordinator.is_running
            assert not coordinator.workers[Tier.TIER1].is_alive()
            assert not coordinator.sweeper.is_alive()
        finally:
            tier2.gate.set()

        assert wait_until(lambda: not tier2_worker.is_alive())
        assert coordinator.pending(Tier.TIER2, "east") == []

        coordinator.start()
        assert coordinator.is_running
        coordinator.stop()

        assert not any(w.is_alive() for w in coordinator.workers.values())
        assert not coordinator.sweeper.is_alive()

    def test_scenario_c_no_reconcile_after_stop(
        self, running_coordinator: Coordinator, reconcilers
    ):
        tier1 = reconcilers[Tier.TIER1]

        def slow_success(ref):
            time.sleep(0.01)
            return ReconcileResult.success()

        tier1.set_default(slow_success)

        for i in range(50):
            running_coordinator.schedule_tier1(role(f"r{i}"))
        assert wait_until(lambda: tier1.call_count() >= 1)

        running_coordinator.stop()
        calls_at_stop = tier1.call_count()
        time.sleep(0.2)

        assert tier1.call_count() == calls_at_stop
        assert running_coordinator.queues[Tier.TIER1].qsize() > 0

    def test_pending_retry_abandoned_on_stop(
        self, coordinator: Coordinator
    ):
        reconciler = ScriptedReconciler()
        reconciler.script("x", ReconcileResult.requeue(0.5))
        coordinator.set_reconcilers(tier1=reconciler)
        coordinator.start()

        coordinator.schedule_tier1(role("x"))
        assert wait_until(lambda: coordinator.retry_controllers[Tier.TIER1].active == 1)

        coordinator.stop()

        assert wait_until(lambda: coordinator.retry_controllers[Tier.TIER1].active == 0)
        assert coordinator.queues[Tier.TIER1].empty()


class TestRetries:

    def test_scenario_d_failing_ref_retried_without_limit(
        self, running_coordinator: Coordinator, reconcilers
    ):
        tier1 = reconcilers[Tier.TIER1]
        tier1.script("x", RuntimeError("permanent"))

        running_coordinator.schedule_tier1(role("x"))

        # backoff is 0.05s in fast_settings
        assert wait_until(lambda: tier1.call_count("x") >= 3, timeout=2.0)
        assert running_coordinator.pending(Tier.TIER1, "east") == [role("x")]

    def test_transient_failure_eventually_releases_next_tier(
        self, running_coordinator: Coordinator, reconcilers
    ):
        reconcilers[Tier.TIER1].script(
            "r1",
            ReconcileResult.failure(RuntimeError("flaky")),
            ReconcileResult.success(),
        )

        running_coordinator.schedule_tier1(role("r1"))
        running_coordinator.schedule_tier2(grant("g1"))

        assert wait_until(lambda: reconcilers[Tier.TIER2].call_count("g1") == 1)
        assert reconcilers[Tier.TIER1].call_count("r1") == 2


class TestEndToEnd:

    def test_tiers_reconciled_in_order_within_domain(
        self, running_coordinator: Coordinator, reconcilers
    ):
        order: list[str] = []
        lock = threading.Lock()

        def recording(ref):
            with lock:
                order.append(ref.name)
            return ReconcileResult.success()

        for reconciler in reconcilers.values():
            reconciler.set_default(recording)
        # Hold Tier-1 until everything is scheduled
        reconcilers[Tier.TIER1].gate = threading.Event()

        running_coordinator.schedule_tier1(role("r1"))
        running_coordinator.schedule_tier1(role("r2"))
        running_coordinator.schedule_tier3(user("u1"))
        running_coordinator.schedule_tier2(grant("g1"))
        reconcilers[Tier.TIER1].gate.set()

        assert wait_until(lambda: running_coordinator.stats()["ledger_size"] == 4)

        assert order == ["r1", "r2", "g1", "u1"]

    def test_user_waits_for_roles_and_grants(
        self, running_coordinator: Coordinator, reconcilers
    ):
        gate = threading.Event()
        reconcilers[Tier.TIER1].gate = gate

        running_coordinator.schedule_tier1(role("r1"))
        running_coordinator.schedule_tier2(grant("g1"))
        running_coordinator.schedule_tier3(user("u1"))

        time.sleep(0.1)
        assert reconcilers[Tier.TIER2].call_count() == 0
        assert reconcilers[Tier.TIER3].call_count() == 0

        gate.set()

        assert wait_until(lambda: reconcilers[Tier.TIER3].call_count("u1") == 1)
        calls = running_coordinator.stats()["tiers"]
        assert calls["tier2"]["processed"] == 1

    def test_stats_shows_ref_in_flight(self, running_coordinator: Coordinator, reconcilers):
        reconcilers[Tier.TIER1].gate = threading.Event()

        running_coordinator.schedule_tier1(role("r1"))
        assert wait_until(lambda: reconcilers[Tier.TIER1].call_count("r1") == 1)

        tier1 = running_coordinator.stats()["tiers"]["tier1"]
        assert tier1["current"] == "east/T1/r1"
        assert tier1["worker_state"] == WorkerState.RECONCILING.value

        reconcilers[Tier.TIER1].gate.set()
        assert wait_until(lambda: running_coordinator.stats()["tiers"]["tier1"]["current"] is None)

    def test_blocked_domain_does_not_block_other_domain(
        self, running_coordinator: Coordinator, reconcilers
    ):
        reconcilers[Tier.TIER1].script("stuck", RuntimeError("never"))

        running_coordinator.schedule_tier1(role("stuck", domain="east"))
        running_coordinator.schedule_tier2(grant("g-east", domain="east"))
        running_coordinator.schedule_tier1(role("ok", domain="west"))
        running_coordinator.schedule_tier2(grant("g-west", domain="west"))

        assert wait_until(lambda: reconcilers[Tier.TIER2].call_count("g-west") == 1)
        assert reconcilers[Tier.TIER2].call_count("g-east") == 0
