"""Shared fixtures: a small two-clinic calendar and an engine on a fixed clock."""

from datetime import UTC, date, datetime, time, timedelta

import pytest

from clinicflow.config import SchedulingConfig
from clinicflow.models.calendar import (
    AppointmentType,
    Provider,
    Resource,
    ResourceKind,
    ResourceRequirement,
    WorkingHours,
)
from clinicflow.services.appointments import BookingRequest
from clinicflow.services.calendar_store import InMemoryCalendarStore
from clinicflow.services.collaborators import Notification
from clinicflow.services.engine import ClinicEngine

CLINIC = "c1"
OTHER_CLINIC = "c2"

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=UTC)


class FakeClock:
    """Settable clock handed to the engine."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotificationService:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def events(self) -> list[str]:
        return [n.event for n in self.sent]


def build_calendar() -> InMemoryCalendarStore:
    """Clinic c1: hygiene providers dr-a/b/c, a general-only dr-d, three chairs and a room."""
    calendar = InMemoryCalendarStore()
    calendar.register_clinic(CLINIC, "UTC")
    calendar.register_clinic(OTHER_CLINIC, "UTC")

    hours = WorkingHours.weekly(time(9), time(17), breaks=((time(12), time(13)),))
    for provider_id in ("dr-a", "dr-b", "dr-c"):
        calendar.upsert_provider(
            Provider(provider_id, CLINIC, provider_id.upper(), hours, capabilities=frozenset({"general", "hygiene"}))
        )
    calendar.upsert_provider(Provider("dr-d", CLINIC, "DR-D", hours, capabilities=frozenset({"general"})))
    calendar.upsert_provider(Provider("dr-x", OTHER_CLINIC, "DR-X", hours, capabilities=frozenset({"general"})))

    calendar.upsert_resource(Resource("chair-1", CLINIC, "Chair 1", ResourceKind.CHAIR))
    calendar.upsert_resource(Resource("chair-2", CLINIC, "Chair 2", ResourceKind.CHAIR))
    calendar.upsert_resource(Resource("xray-chair", CLINIC, "X-ray chair", ResourceKind.CHAIR, frozenset({"xray"})))
    calendar.upsert_resource(Resource("room-1", CLINIC, "Consult room", ResourceKind.ROOM))

    calendar.upsert_appointment_type(AppointmentType("exam", CLINIC, "Exam", 30))
    calendar.upsert_appointment_type(
        AppointmentType(
            "cleaning",
            CLINIC,
            "Cleaning",
            30,
            provider_capabilities=frozenset({"hygiene"}),
            resource_requirements=(ResourceRequirement(ResourceKind.CHAIR),),
        )
    )
    calendar.upsert_appointment_type(
        AppointmentType(
            "xray",
            CLINIC,
            "X-ray",
            20,
            resource_requirements=(ResourceRequirement(ResourceKind.CHAIR, frozenset({"xray"})),),
        )
    )
    calendar.upsert_appointment_type(
        AppointmentType("buffered", CLINIC, "Surgery", 30, buffer_before_minutes=10, buffer_after_minutes=15)
    )
    calendar.upsert_appointment_type(
        AppointmentType(
            "consult",
            CLINIC,
            "Consult",
            30,
            resource_requirements=(ResourceRequirement(ResourceKind.ROOM, resource_id="room-1"),),
        )
    )
    calendar.upsert_appointment_type(AppointmentType("exam", OTHER_CLINIC, "Exam", 30))
    return calendar


def booking(
    patient_id: str = "p1",
    provider_id: str = "dr-a",
    appointment_type_id: str = "exam",
    start: datetime | None = None,
    **kwargs,
) -> BookingRequest:
    return BookingRequest(
        patient_id=patient_id,
        provider_id=provider_id,
        appointment_type_id=appointment_type_id,
        start=start or at(MONDAY, 10),
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    # Sunday morning before the test week
    return FakeClock(at(MONDAY - timedelta(days=1), 8))


@pytest.fixture
def config() -> SchedulingConfig:
    return SchedulingConfig()


@pytest.fixture
def notifications() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def engine(clock, config, notifications) -> ClinicEngine:
    return ClinicEngine(config=config, calendar=build_calendar(), notification_service=notifications, clock=clock)
