"""Scheduling, waitlist and patient flow services."""

from clinicflow.services.engine import ClinicEngine, get_engine

__all__ = ["ClinicEngine", "get_engine"]
