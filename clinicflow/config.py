"""Scheduling engine configuration."""

import os
from dataclasses import dataclass, field, fields
from typing import Literal

AllocationStage = Literal["confirmation", "check_in"]


def _default_wait_thresholds() -> dict[str, int]:
    return {"waiting": 15, "called": 10, "checkout": 15}


@dataclass
class SchedulingConfig:
    """Configuration for the scheduling core."""

    # Check-in guard around the appointment start
    arrival_window_before_minutes: int = 60
    arrival_window_after_minutes: int = 30

    # When unbound "any chair" requirements get a concrete resource
    allocation_stage: AllocationStage = "check_in"

    # Bounds on read-side work
    max_range_days: int = 93
    max_recurrence_instances: int = 52
    max_recurrence_interval: int = 12
    max_duration_minutes: int = 480
    max_buffer_minutes: int = 60
    slot_step_minutes: int | None = None

    # Waitlist
    offer_ttl_minutes: int = 30
    wait_weight: float = 1.0
    no_show_penalty: float = 0.5

    # Patient flow SLA thresholds, minutes per flow state
    wait_thresholds: dict[str, int] = field(default_factory=_default_wait_thresholds)

    maintenance_interval_seconds: float = 60.0
    load_demo_data: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, prefix: str = "CLINICFLOW_") -> "SchedulingConfig":
        """Build a config from defaults overridden by ``CLINICFLOW_*`` variables.

        ``wait_thresholds`` is read as ``state=minutes`` pairs separated by commas.
        """
        config = cls()
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            current = getattr(config, f.name)
            if f.name == "wait_thresholds":
                value: object = {
                    state.strip(): int(minutes)
                    for state, minutes in (pair.split("=", 1) for pair in raw.split(",") if pair.strip())
                }
            elif isinstance(current, bool):
                value = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            elif f.name == "slot_step_minutes":
                value = int(raw)
            else:
                value = raw
            setattr(config, f.name, value)

        if config.allocation_stage not in ("confirmation", "check_in"):
            raise ValueError(f"Unknown allocation stage: {config.allocation_stage}")
        return config
