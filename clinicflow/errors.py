"""Scheduling error taxonomy.

Every error carries a stable ``code`` that the API layer returns to callers
alongside the human-readable message and any structured details.
"""

from typing import Any


class SchedulingError(Exception):
    """Base class for errors surfaced by the scheduling core."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def as_dict(self) -> dict[str, Any]:
        """Return the error as a JSON-friendly dictionary."""
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(SchedulingError):
    """Malformed input, rejected before any conflict checking."""

    code = "VALIDATION_ERROR"


class NotFoundError(SchedulingError):
    """Unknown id, or an id that belongs to another clinic."""

    code = "NOT_FOUND"


class ConflictError(SchedulingError):
    """Provider, resource or patient double-booking."""

    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        conflicting_ids: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.conflicting_ids = conflicting_ids or []
        merged = {"conflicting_appointment_ids": self.conflicting_ids}
        merged.update(details or {})
        super().__init__(message, code=code, details=merged)


class SlotUnavailableError(SchedulingError):
    """Requested time lies outside working hours, a break or a blackout."""

    code = "SLOT_UNAVAILABLE"


class GuardViolationError(SchedulingError):
    """Illegal state transition or failed transition guard."""

    code = "GUARD_VIOLATION"


class ResourceUnavailableError(SchedulingError):
    """No qualifying resource is free for the appointment."""

    code = "RESOURCE_UNAVAILABLE"


class StaleOfferError(SchedulingError):
    """Waitlist offer already consumed, declined or expired."""

    code = "STALE_OFFER"
