"""Clinic calendar reference data: providers, resources and appointment types."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import StrEnum

from clinicflow.errors import ValidationError
from clinicflow.utils.intervals import TimeInterval, day_bounds, local_interval, subtract


class ResourceKind(StrEnum):
    """Kinds of schedulable physical assets."""

    CHAIR = "chair"
    ROOM = "room"
    EQUIPMENT = "equipment"


@dataclass(frozen=True)
class DayWindow:
    """A wall-clock window within one day."""

    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(f"Window end {self.end} must be after start {self.start}")


@dataclass(frozen=True)
class WorkingHours:
    """Weekly working-hour template.

    ``windows`` and ``breaks`` map a weekday (0 = Monday) to wall-clock
    windows. A weekday without windows is a closed day.
    """

    windows: dict[int, tuple[DayWindow, ...]] = field(default_factory=dict)
    breaks: dict[int, tuple[DayWindow, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for weekday in (*self.windows, *self.breaks):
            if not 0 <= weekday <= 6:
                raise ValidationError(f"Weekday must be between 0 and 6, got {weekday}")

    @classmethod
    def weekly(
        cls,
        start: time,
        end: time,
        weekdays: tuple[int, ...] = (0, 1, 2, 3, 4),
        breaks: tuple[tuple[time, time], ...] = (),
    ) -> "WorkingHours":
        """Same open window (and breaks) on each of ``weekdays``."""
        window = DayWindow(start, end)
        day_breaks = tuple(DayWindow(b_start, b_end) for b_start, b_end in breaks)
        return cls(
            windows={day: (window,) for day in weekdays},
            breaks={day: day_breaks for day in weekdays if day_breaks},
        )

    def windows_on(self, day: date, tz: tzinfo) -> list[TimeInterval]:
        """Open intervals on ``day`` with breaks removed."""
        weekday = day.weekday()
        open_windows = [local_interval(day, w.start, w.end, tz) for w in self.windows.get(weekday, ())]
        breaks = [local_interval(day, b.start, b.end, tz) for b in self.breaks.get(weekday, ())]
        return subtract(open_windows, breaks)


@dataclass(frozen=True)
class Blackout:
    """A range during which a provider or resource is unavailable."""

    start: datetime
    end: datetime
    reason: str = ""

    def __post_init__(self) -> None:
        # Validates ordering and timezone
        TimeInterval(self.start, self.end)

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.start, self.end)

    @classmethod
    def full_day(cls, day: date, tz: tzinfo, reason: str = "") -> "Blackout":
        bounds = day_bounds(day, tz)
        return cls(bounds.start, bounds.end, reason)


@dataclass(frozen=True)
class Provider:
    """A clinician whose time is booked."""

    id: str
    clinic_id: str
    name: str
    hours: WorkingHours
    blackouts: tuple[Blackout, ...] = ()
    capabilities: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Resource:
    """A chair, room or piece of equipment.

    Resources without their own ``hours`` follow the provider's hours.
    """

    id: str
    clinic_id: str
    name: str
    kind: ResourceKind
    capabilities: frozenset[str] = frozenset()
    hours: WorkingHours | None = None
    blackouts: tuple[Blackout, ...] = ()

    def satisfies(self, requirement: "ResourceRequirement") -> bool:
        return self.kind == requirement.kind and requirement.capabilities <= self.capabilities


@dataclass(frozen=True)
class ResourceRequirement:
    """A resource an appointment needs.

    A requirement with a ``resource_id`` is pinned to that resource; one
    without is bound to a qualifying resource by the allocator.
    """

    kind: ResourceKind
    capabilities: frozenset[str] = frozenset()
    resource_id: str | None = None

    @property
    def pinned(self) -> bool:
        return self.resource_id is not None

    def pin(self, resource_id: str) -> "ResourceRequirement":
        return ResourceRequirement(self.kind, self.capabilities, resource_id)


@dataclass(frozen=True)
class AppointmentType:
    """Immutable appointment type reference data."""

    id: str
    clinic_id: str
    name: str
    duration_minutes: int
    provider_capabilities: frozenset[str] = frozenset()
    resource_requirements: tuple[ResourceRequirement, ...] = ()
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0

    def __post_init__(self) -> None:
        if self.duration_minutes <= 0:
            raise ValidationError("Appointment type duration must be positive")
        if self.buffer_before_minutes < 0 or self.buffer_after_minutes < 0:
            raise ValidationError("Buffers cannot be negative")

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def buffer_before(self) -> timedelta:
        return timedelta(minutes=self.buffer_before_minutes)

    @property
    def buffer_after(self) -> timedelta:
        return timedelta(minutes=self.buffer_after_minutes)
