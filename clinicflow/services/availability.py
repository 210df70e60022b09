"""Availability engine: open slots for a provider and its required resources."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, timedelta
from zoneinfo import ZoneInfo

from clinicflow.config import SchedulingConfig
from clinicflow.errors import ValidationError
from clinicflow.models.appointment import Appointment
from clinicflow.models.calendar import AppointmentType, Blackout, Provider, Resource, ResourceRequirement, WorkingHours
from clinicflow.services.appointment_store import InMemoryAppointmentStore
from clinicflow.services.calendar_store import CalendarSource, qualifying_resources
from clinicflow.services.conflicts import ConflictDetector
from clinicflow.utils.intervals import TimeInterval, day_bounds, intersect, merge, subtract
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of clinic-local dates."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValidationError("Date range end must be on or after its start")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __iter__(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)


class AvailabilityEngine:
    """Computes bookable candidate intervals.

    Per day: provider working windows minus breaks, blackouts and the
    provider's committed bookings, intersected with the free windows of every
    required resource. Candidates are stepped through the result at the
    appointment type's duration and must fit with their buffers.
    """

    def __init__(
        self,
        calendar: CalendarSource,
        store: InMemoryAppointmentStore,
        detector: ConflictDetector,
        config: SchedulingConfig,
    ):
        self.calendar = calendar
        self.store = store
        self.detector = detector
        self.config = config

    def get_open_slots(
        self,
        clinic_id: str,
        provider_id: str,
        appointment_type_id: str,
        date_range: DateRange,
        requirements: tuple[ResourceRequirement, ...] | None = None,
        exclude_ids: Iterable[str] = (),
    ) -> Iterator[TimeInterval]:
        """Lazily yield open appointment intervals inside ``date_range``.

        Raises:
            ValidationError: If the range exceeds the configured maximum
            NotFoundError: If the provider or appointment type is unknown
        """
        if date_range.days > self.config.max_range_days:
            raise ValidationError(f"Date range cannot exceed {self.config.max_range_days} days")

        provider = self.calendar.get_provider(clinic_id, provider_id)
        appointment_type = self.calendar.get_appointment_type(clinic_id, appointment_type_id)
        if requirements is None:
            requirements = appointment_type.resource_requirements
        # Resolve qualifying pools eagerly so bad requirements fail on call, not on iteration
        pools = [qualifying_resources(self.calendar, clinic_id, r) for r in requirements]

        return self._iter_slots(
            clinic_id, provider, appointment_type, requirements, pools, date_range, set(exclude_ids)
        )

    def is_bookable(
        self,
        clinic_id: str,
        provider_id: str,
        occupied: TimeInterval,
        requirements: tuple[ResourceRequirement, ...] = (),
    ) -> bool:
        """Whether ``occupied`` lies inside working availability, ignoring bookings."""
        provider = self.calendar.get_provider(clinic_id, provider_id)
        if not self._covers(clinic_id, provider.hours, provider.blackouts, occupied):
            return False

        for requirement in requirements:
            pool = qualifying_resources(self.calendar, clinic_id, requirement)
            if not any(self.resource_works(clinic_id, provider, resource, occupied) for resource in pool):
                return False
        return True

    def resource_works(self, clinic_id: str, provider: Provider, resource: Resource, occupied: TimeInterval) -> bool:
        """Whether the resource's own hours and blackouts cover ``occupied``."""
        return self._covers(clinic_id, resource.hours or provider.hours, resource.blackouts, occupied)

    def _covers(
        self, clinic_id: str, hours: WorkingHours, blackouts: tuple[Blackout, ...], occupied: TimeInterval
    ) -> bool:
        tz = self.calendar.clinic_timezone(clinic_id)
        windows = merge(w for day in self._days_touched(occupied, tz) for w in self._working(hours, blackouts, day, tz))
        return any(window.contains(occupied) for window in windows)

    def free_windows(
        self,
        clinic_id: str,
        provider: Provider,
        pools: list[list[Resource]],
        day: date,
        exclude_ids: set[str] | None = None,
    ) -> list[TimeInterval]:
        """Free intervals on ``day`` for the provider and all resource pools together."""
        tz = self.calendar.clinic_timezone(clinic_id)
        bounds = day_bounds(day, tz)
        exclude_ids = exclude_ids or set()
        booked = [a for a in self.store.list_appointments(clinic_id, window=bounds) if a.id not in exclude_ids]

        windows = self._working(provider.hours, provider.blackouts, day, tz)
        windows = subtract(windows, (a.occupied for a in booked if a.provider_id == provider.id))

        for pool in pools:
            pool_windows: list[TimeInterval] = []
            for resource in pool:
                resource_windows = self._working(resource.hours or provider.hours, resource.blackouts, day, tz)
                pool_windows.extend(
                    subtract(resource_windows, (a.occupied for a in booked if resource.id in a.resource_ids))
                )
            windows = intersect(windows, merge(pool_windows))
            if not windows:
                break
        return windows

    def _iter_slots(
        self,
        clinic_id: str,
        provider: Provider,
        appointment_type: AppointmentType,
        requirements: tuple[ResourceRequirement, ...],
        pools: list[list[Resource]],
        date_range: DateRange,
        exclude_ids: set[str],
    ) -> Iterator[TimeInterval]:
        step = timedelta(minutes=self.config.slot_step_minutes or appointment_type.duration_minutes)
        before, after = appointment_type.buffer_before, appointment_type.buffer_after
        needs_pool_check = any(not r.pinned for r in requirements)

        for day in date_range:
            for window in self.free_windows(clinic_id, provider, pools, day, exclude_ids):
                cursor = window.start + before
                while cursor + appointment_type.duration + after <= window.end:
                    candidate = TimeInterval(cursor, cursor + appointment_type.duration)
                    if not needs_pool_check or self._pool_has_room(
                        clinic_id, provider.id, appointment_type, requirements, candidate, exclude_ids
                    ):
                        yield candidate
                    cursor += step

    def _pool_has_room(
        self,
        clinic_id: str,
        provider_id: str,
        appointment_type: AppointmentType,
        requirements: tuple[ResourceRequirement, ...],
        candidate: TimeInterval,
        exclude_ids: set[str],
    ) -> bool:
        """Shared pools must still match every overlapping unbound requirement to a free resource."""
        candidate_appointment = Appointment(
            id="availability-candidate",
            clinic_id=clinic_id,
            patient_id="",
            provider_id=provider_id,
            appointment_type_id=appointment_type.id,
            start=candidate.start,
            end=candidate.end,
            requirements=requirements,
            buffer_before_minutes=appointment_type.buffer_before_minutes,
            buffer_after_minutes=appointment_type.buffer_after_minutes,
        )
        return self.detector.check_conflict(candidate_appointment, exclude_ids).ok

    @staticmethod
    def _working(hours: WorkingHours, blackouts: tuple[Blackout, ...], day: date, tz: ZoneInfo) -> list[TimeInterval]:
        return subtract(hours.windows_on(day, tz), (b.interval for b in blackouts))

    @staticmethod
    def _days_touched(interval: TimeInterval, tz: ZoneInfo) -> list[date]:
        first = interval.start.astimezone(tz).date()
        last = (interval.end - timedelta(microseconds=1)).astimezone(tz).date()
        return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]
