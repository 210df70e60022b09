"""Wiring of the scheduling services into one engine per process."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from clinicflow.config import SchedulingConfig
from clinicflow.errors import ValidationError
from clinicflow.models.appointment import Appointment, AppointmentStatus
from clinicflow.models.visit import FlowState, Visit
from clinicflow.services.allocation import ResourceAllocator
from clinicflow.services.appointment_store import InMemoryAppointmentStore
from clinicflow.services.appointments import AppointmentService
from clinicflow.services.availability import AvailabilityEngine, DateRange
from clinicflow.services.calendar_store import InMemoryCalendarStore
from clinicflow.services.collaborators import (
    AuditLog,
    InMemoryAuditLog,
    LoggingNotificationService,
    NotificationDispatcher,
    NotificationService,
)
from clinicflow.services.conflicts import ConflictDetector
from clinicflow.services.patient_flow import PatientFlowTracker
from clinicflow.services.recurrence import RecurrenceExpander
from clinicflow.services.waitlist import WaitlistManager
from clinicflow.utils.intervals import TimeInterval, day_bounds
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CalendarView:
    appointments: list[Appointment]
    open_slots: list[TimeInterval]


class ClinicEngine:
    """Owns the stores and services and the hooks between them.

    - Cancelled or no-show appointments with a future start are offered to the waitlist
    - A linked visit entering treatment starts its appointment
    - Offer expiry and no-show detection run from ``run_maintenance``
    """

    def __init__(
        self,
        config: SchedulingConfig | None = None,
        calendar: InMemoryCalendarStore | None = None,
        notification_service: NotificationService | None = None,
        audit_log: AuditLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or SchedulingConfig.from_env()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.calendar = calendar or InMemoryCalendarStore()
        self.store = InMemoryAppointmentStore()
        self.audit_log = audit_log or InMemoryAuditLog()
        self.notifier = NotificationDispatcher(notification_service or LoggingNotificationService())

        self.detector = ConflictDetector(self.store, self.calendar)
        self.availability = AvailabilityEngine(self.calendar, self.store, self.detector, self.config)
        self.expander = RecurrenceExpander(self.calendar, self.config)
        self.allocator = ResourceAllocator(self.calendar, self.store, self.detector, self.availability, self.audit_log)
        self.flow = PatientFlowTracker(self.calendar, self.config, self.audit_log)
        self.appointments = AppointmentService(
            self.calendar,
            self.store,
            self.detector,
            self.availability,
            self.expander,
            self.allocator,
            self.flow,
            self.notifier,
            self.audit_log,
            self.config,
            clock=self.clock,
        )
        self.waitlist = WaitlistManager(
            self.calendar, self.appointments, self.notifier, self.audit_log, self.config, clock=self.clock
        )
        self.appointments.release_listeners.append(self._offer_released)

    def now(self) -> datetime:
        return self.clock()

    async def _offer_released(self, appointment: Appointment, now: datetime) -> None:
        ranked = await self.waitlist.offer_opening(
            appointment.clinic_id,
            appointment.appointment_type_id,
            appointment.interval,
            appointment.provider_id,
            appointment.requirements,
            now,
        )
        logger.info(f"Released appointment {appointment.id}; {len(ranked)} waitlist candidates ranked")

    def calendar_view(
        self,
        clinic_id: str,
        date_range: DateRange,
        provider_id: str | None = None,
        resource_id: str | None = None,
        appointment_type_id: str | None = None,
    ) -> CalendarView:
        """Committed appointments in the range, plus open slots when a provider and type are given."""
        if date_range.days > self.config.max_range_days:
            raise ValidationError(f"Date range cannot exceed {self.config.max_range_days} days")

        tz = self.calendar.clinic_timezone(clinic_id)
        window = TimeInterval(day_bounds(date_range.start, tz).start, day_bounds(date_range.end, tz).end)
        appointments = self.store.list_appointments(
            clinic_id, provider_id=provider_id, resource_id=resource_id, window=window
        )

        open_slots: list[TimeInterval] = []
        if provider_id is not None and appointment_type_id is not None:
            open_slots = list(
                self.availability.get_open_slots(clinic_id, provider_id, appointment_type_id, date_range)
            )
        return CalendarView(appointments=appointments, open_slots=open_slots)

    def walk_in(
        self,
        clinic_id: str,
        location_id: str,
        patient_id: str,
        emergency: bool = False,
        actor: str = "front_desk",
        now: datetime | None = None,
    ) -> Visit:
        """Open a visit for a patient without an appointment."""
        now = now or self.clock()
        return self.flow.check_in(clinic_id, location_id, patient_id, now, emergency=emergency, actor=actor)

    async def transition_visit(
        self,
        clinic_id: str,
        visit_id: str,
        target: FlowState,
        actor: str = "front_desk",
        note: str | None = None,
        now: datetime | None = None,
    ) -> Visit:
        now = now or self.clock()
        visit = self.flow.transition(clinic_id, visit_id, target, now, actor, note)
        if target == FlowState.IN_TREATMENT and visit.appointment_id:
            appointment = self.store.get(clinic_id, visit.appointment_id)
            if appointment.status == AppointmentStatus.CHECKED_IN:
                await self.appointments.transition(
                    clinic_id, appointment.id, AppointmentStatus.IN_PROGRESS, actor, now=now
                )
        return visit

    async def run_maintenance(self, now: datetime | None = None) -> dict[str, dict[str, int]]:
        """Expire offers and entries, then sweep no-shows, for every clinic.

        One clinic failing does not stop the others.
        """
        now = now or self.clock()
        report: dict[str, dict[str, int]] = {}
        for clinic_id in sorted(set(self.store.clinic_ids()) | set(self.waitlist.clinic_ids())):
            try:
                expired = self.waitlist.expire(clinic_id, now)
                no_shows = await self.appointments.sweep_no_shows(clinic_id, now)
            except Exception as e:
                logger.error(f"Maintenance failed for clinic {clinic_id}: {e}", exc_info=True)
                continue
            report[clinic_id] = {**expired, "no_shows": len(no_shows)}
        return report

    async def shutdown(self) -> None:
        await self.notifier.drain()


_engine: ClinicEngine | None = None


def get_engine() -> ClinicEngine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = ClinicEngine()
    return _engine
