"""Appointment, status machine and recurrence data models."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum

from clinicflow.errors import ValidationError
from clinicflow.models.calendar import ResourceRequirement
from clinicflow.utils.intervals import TimeInterval


class AppointmentStatus(StrEnum):
    """Lifecycle states of a single appointment."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return not APPOINTMENT_TRANSITIONS[self]

    @property
    def is_active(self) -> bool:
        """Whether the appointment still holds its interval."""
        return self not in (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.CHECKED_IN, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CHECKED_IN: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class AppointmentSource(StrEnum):
    """Where a booking came from."""

    STAFF = "staff"
    PHONE = "phone"
    ONLINE = "online"
    WAITLIST = "waitlist"
    RECURRENCE = "recurrence"


@dataclass(frozen=True)
class StatusChange:
    """One entry of an appointment's append-only transition log."""

    from_status: AppointmentStatus | None
    to_status: AppointmentStatus
    at: datetime
    actor: str = "system"
    reason: str | None = None


@dataclass
class Appointment:
    """A committed booking.

    ``start``/``end`` is the clinical appointment time. The buffers widen it
    into the occupied interval used for provider and resource conflicts.
    """

    id: str
    clinic_id: str
    patient_id: str
    provider_id: str
    appointment_type_id: str
    start: datetime
    end: datetime
    requirements: tuple[ResourceRequirement, ...] = ()
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    source: AppointmentSource = AppointmentSource.STAFF
    series_id: str | None = None
    cancellation_reason: str | None = None
    visit_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    history: list[StatusChange] = field(default_factory=list)

    def __post_init__(self) -> None:
        # Raises ValidationError for end <= start or naive datetimes
        TimeInterval(self.start, self.end)

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.start, self.end)

    @property
    def occupied(self) -> TimeInterval:
        return self.interval.expand(
            timedelta(minutes=self.buffer_before_minutes), timedelta(minutes=self.buffer_after_minutes)
        )

    @property
    def resource_ids(self) -> tuple[str, ...]:
        """Concrete resources held, pinned at booking or bound by the allocator."""
        return tuple(r.resource_id for r in self.requirements if r.resource_id is not None)

    @property
    def unbound_requirements(self) -> tuple[ResourceRequirement, ...]:
        return tuple(r for r in self.requirements if not r.pinned)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def record(
        self, to_status: AppointmentStatus, at: datetime, actor: str = "system", reason: str | None = None
    ) -> None:
        """Append a transition to the history and move to ``to_status``."""
        from_status = self.status if self.history else None
        self.history.append(StatusChange(from_status, to_status, at, actor, reason))
        self.status = to_status


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    """A closed recurrence rule: frequency, interval and exactly one terminator.

    ``days_of_week`` (Monday is 0) picks several weekdays per weekly step,
    e.g. ``(0, 2)`` for Monday and Wednesday. Left empty, a weekly rule
    repeats on the seed's own weekday.
    """

    frequency: Frequency
    interval: int = 1
    count: int | None = None
    until: date | None = None
    days_of_week: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.frequency, Frequency):
            raise ValidationError(f"Unknown recurrence frequency: {self.frequency!r}")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise ValidationError("Recurrence interval must be a positive integer")
        if (self.count is None) == (self.until is None):
            raise ValidationError("Recurrence must end by either a count or an until date, not both")
        if self.count is not None and self.count < 1:
            raise ValidationError("Recurrence count must be at least 1")
        if self.days_of_week:
            if self.frequency != Frequency.WEEKLY:
                raise ValidationError("Days of week only apply to weekly recurrence")
            if any(isinstance(d, bool) or not isinstance(d, int) or not 0 <= d <= 6 for d in self.days_of_week):
                raise ValidationError("Days of week must be integers from 0 (Monday) to 6 (Sunday)")
            if len(set(self.days_of_week)) != len(self.days_of_week):
                raise ValidationError("Days of week must not repeat")
            object.__setattr__(self, "days_of_week", tuple(sorted(self.days_of_week)))


class InstanceStatus(StrEnum):
    BOOKED = "booked"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class InstanceResult:
    """Outcome of committing one occurrence of a series."""

    index: int
    start: datetime
    end: datetime
    status: InstanceStatus
    appointment_id: str | None = None
    reason: str | None = None
    conflicting_ids: tuple[str, ...] = ()


@dataclass
class SeriesTemplate:
    """What each not-yet-generated occurrence of a series looks like."""

    appointment_type_id: str
    duration_minutes: int
    requirements: tuple[ResourceRequirement, ...] = ()


@dataclass
class RecurrenceSeries:
    """A recurring booking and the instances generated from it so far."""

    id: str
    clinic_id: str
    patient_id: str
    provider_id: str
    rule: RecurrenceRule
    template: SeriesTemplate
    seed_start: datetime
    generated: int = 0
    cursor: int = 0
    exhausted: bool = False
    instance_ids: list[str] = field(default_factory=list)
    results: list[InstanceResult] = field(default_factory=list)
