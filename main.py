"""
Tiered reconcile coordinator - command-line driver.

Loads a JSON manifest of managed objects, resolves each one to a domain and
tier, schedules them on a Coordinator wired with logging reconcilers, and
runs until every pending set drains or the duration elapses.

Manifest format (a list, or {"items": [...]}):
    [{"kind": "Neo4jRole", "metadata": {"name": "reader", "namespace": "db"},
      "spec": {"clusterRef": "east"}}, ...]

Exit codes: 0 drained, 1 timed out or interrupted, 2 invalid input.
"""

import argparse
import json
import logging
import os
import random
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from src.coordinator import (
    Coordinator,
    CoordinatorSettings,
    KindScopeResolver,
    ObjectRef,
    ReconcileResult,
    ScopeResolutionError,
    route,
)
from src.infra.logging_config import setup_logging


EXIT_DRAINED = 0
EXIT_TIMEOUT = 1
EXIT_INVALID_INPUT = 2

logger = logging.getLogger("tiered_coordinator")

shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    """SIGINT / SIGTERM handler - stop after the current reconcile calls."""
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping coordinator")
    shutdown_requested.set()


class LoggingReconciler:
    """
    Stand-in reconciler that logs each call.

    failure_rate injects random failures so retry and cascade behaviour can
    be observed without a managed system.
    """

    def __init__(self, label: str, failure_rate: float = 0.0, work_seconds: float = 0.0):
        self.label = label
        self.failure_rate = failure_rate
        self.work_seconds = work_seconds

    def reconcile(self, ref: ObjectRef) -> ReconcileResult:
        if self.work_seconds:
            time.sleep(self.work_seconds)
        if self.failure_rate and random.random() < self.failure_rate:
            return ReconcileResult.failure(RuntimeError(f"simulated {self.label} failure"))
        logger.info(f"[{self.label}] reconciled {ref}")
        return ReconcileResult.success()


def load_manifest(path: Path) -> list[dict[str, Any]]:
    """Read manifest objects from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError("Manifest must be a list of objects or {\"items\": [...]}")
    return data


def total_pending(coordinator: Coordinator) -> int:
    return sum(tier["pending"] for tier in coordinator.stats()["tiers"].values())


def run(
    manifest: list[dict[str, Any]],
    settings: CoordinatorSettings,
    duration_seconds: Optional[float] = None,
    failure_rate: float = 0.0,
    check_interval: float = 0.2,
) -> tuple[int, dict]:
    """
    Schedule every manifest object and wait for the pending sets to drain.

    Returns:
        (exit_code, stats)
    """
    coordinator = Coordinator(settings)
    coordinator.set_reconcilers(
        tier1=LoggingReconciler("tier1", failure_rate),
        tier2=LoggingReconciler("tier2", failure_rate),
        tier3=LoggingReconciler("tier3", failure_rate),
    )
    resolver = KindScopeResolver()

    coordinator.start()
    try:
        for obj in manifest:
            route(coordinator, resolver, obj)

        deadline = None if duration_seconds is None else time.monotonic() + duration_seconds
        exit_code = EXIT_DRAINED
        while total_pending(coordinator) > 0:
            if shutdown_requested.is_set():
                exit_code = EXIT_TIMEOUT
                break
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"Duration elapsed with {total_pending(coordinator)} refs pending")
                exit_code = EXIT_TIMEOUT
                break
            shutdown_requested.wait(check_interval)
    finally:
        coordinator.stop()

    return exit_code, coordinator.stats()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile a manifest of tiered objects in dependency order"
    )
    parser.add_argument("manifest", type=Path, help="JSON manifest of objects")
    parser.add_argument(
        "--duration-seconds",
        type=float,
        default=None,
        help="Give up after this many seconds (default: run until drained)",
    )
    parser.add_argument(
        "--failure-rate",
        type=float,
        default=0.0,
        help="Fraction of reconcile calls that fail, for retry drills",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-dir",
        default=os.getenv("LOG_DIR", "logs"),
        help="Directory for daily log files",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level, log_dir=args.log_dir)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        settings = CoordinatorSettings.from_env()
        manifest = load_manifest(args.manifest)
        exit_code, stats = run(
            manifest,
            settings,
            duration_seconds=args.duration_seconds,
            failure_rate=args.failure_rate,
        )
    except (OSError, ValueError, ValidationError, ScopeResolutionError) as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_INVALID_INPUT

    print(json.dumps(stats, indent=2))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
