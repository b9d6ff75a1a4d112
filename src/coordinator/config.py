"""
Configuration for the tiered reconcile coordinator.

Defaults are module constants; CoordinatorSettings validates overrides and
can be populated from COORDINATOR_* environment variables.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

# Queue settings
DEFAULT_QUEUE_CAPACITY = 100

# Timeouts (seconds)
DEFAULT_RECONCILE_TIMEOUT = 300.0
DEFAULT_RETRY_BACKOFF = 30.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_SHUTDOWN_GRACE = 30.0

# Completion ledger (seconds)
DEFAULT_LEDGER_RETENTION = 3600.0
DEFAULT_LEDGER_SWEEP_INTERVAL = 600.0

ENV_PREFIX = "COORDINATOR_"


class CoordinatorSettings(BaseModel):
    """Tunables shared by the coordinator, its workers and the ledger sweep."""

    queue_capacity: int = Field(
        default=DEFAULT_QUEUE_CAPACITY,
        ge=1,
        description="Capacity of each tier queue"
    )
    reconcile_timeout: float = Field(
        default=DEFAULT_RECONCILE_TIMEOUT,
        gt=0,
        description="Per-call reconcile timeout in seconds"
    )
    retry_backoff: float = Field(
        default=DEFAULT_RETRY_BACKOFF,
        gt=0,
        description="Fixed delay before a failed item is re-offered"
    )
    ledger_retention: float = Field(
        default=DEFAULT_LEDGER_RETENTION,
        gt=0,
        description="Age after which ledger entries are purged"
    )
    ledger_sweep_interval: float = Field(
        default=DEFAULT_LEDGER_SWEEP_INTERVAL,
        gt=0,
        description="Seconds between ledger sweeps"
    )
    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        gt=0,
        description="How often an idle worker re-checks the shutdown signal"
    )
    shutdown_grace: float = Field(
        default=DEFAULT_SHUTDOWN_GRACE,
        ge=0,
        description="How long stop() waits for workers to exit"
    )

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "CoordinatorSettings":
        """
        Build settings from COORDINATOR_* environment variables.

        Unset variables keep their defaults. Values are validated by the
        model, so a malformed variable raises pydantic.ValidationError.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None and value != "":
                overrides[name] = value
        return cls(**overrides)
