"""Late binding of concrete chairs, rooms and equipment to appointments."""

from clinicflow.errors import GuardViolationError, ResourceUnavailableError
from clinicflow.models.appointment import Appointment
from clinicflow.models.calendar import Resource
from clinicflow.services.appointment_store import InMemoryAppointmentStore
from clinicflow.services.availability import AvailabilityEngine
from clinicflow.services.calendar_store import CalendarSource, qualifying_resources
from clinicflow.services.collaborators import AuditEntry, AuditLog
from clinicflow.services.conflicts import ConflictDetector
from clinicflow.utils.intervals import day_bounds
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

Ranking = dict[int, list[Resource]]


class ResourceAllocator:
    """Binds qualifying resources to an appointment's unbound requirements.

    Ranking happens outside the commit gate. Binding happens inside it and
    re-checks every candidate against current bookings first, since time has
    passed since the appointment was booked. A requirement that cannot be met
    is an error; it is never satisfied by a non-qualifying resource.
    """

    def __init__(
        self,
        calendar: CalendarSource,
        store: InMemoryAppointmentStore,
        detector: ConflictDetector,
        availability: AvailabilityEngine,
        audit_log: AuditLog,
    ):
        self.calendar = calendar
        self.store = store
        self.detector = detector
        self.availability = availability
        self.audit_log = audit_log

    async def allocate(self, clinic_id: str, appointment_id: str, actor: str = "system") -> tuple[str, ...]:
        """Bind resources to an appointment and return every resource it now holds.

        Raises:
            GuardViolationError: If the appointment is no longer active
            ResourceUnavailableError: If a requirement cannot be satisfied
        """
        appointment = self.store.get(clinic_id, appointment_id)
        ranking = self.rank(appointment)
        async with self.store.commit_gate(clinic_id):
            return self.bind(appointment, ranking, actor)

    def rank(self, appointment: Appointment) -> Ranking:
        """Candidate resources per unbound requirement, best fit first.

        Best fit means the fewest capability tags beyond what is required, so
        a plain cleaning does not take the X-ray room, then the least booked
        time that day.
        """
        provider = self.calendar.get_provider(appointment.clinic_id, appointment.provider_id)
        tz = self.calendar.clinic_timezone(appointment.clinic_id)
        day = day_bounds(appointment.start.astimezone(tz).date(), tz)
        booked_minutes: dict[str, float] = {}
        for other in self.store.list_appointments(appointment.clinic_id, window=day):
            for resource_id in other.resource_ids:
                minutes = other.occupied.duration.total_seconds() / 60
                booked_minutes[resource_id] = booked_minutes.get(resource_id, 0) + minutes

        ranking: Ranking = {}
        for index, requirement in enumerate(appointment.requirements):
            if requirement.pinned:
                continue
            candidates = [
                resource
                for resource in qualifying_resources(self.calendar, appointment.clinic_id, requirement)
                if self.availability.resource_works(appointment.clinic_id, provider, resource, appointment.occupied)
            ]
            ranking[index] = sorted(
                candidates,
                key=lambda r: (len(r.capabilities - requirement.capabilities), booked_minutes.get(r.id, 0), r.id),
            )
        return ranking

    def bind(self, appointment: Appointment, ranking: Ranking, actor: str = "system") -> tuple[str, ...]:
        """Bind under the commit gate; the caller must hold it."""
        if not appointment.is_active:
            raise GuardViolationError(f"Appointment {appointment.id} is {appointment.status}; nothing to allocate")

        occupied = appointment.occupied
        pinned = appointment.resource_ids
        recheck = self.detector.check_resources(appointment.clinic_id, pinned, occupied, exclude_ids=[appointment.id])
        if not recheck.ok:
            raise ResourceUnavailableError(
                f"Resources booked for appointment {appointment.id} are no longer free: {recheck.reason}",
                details={"conflicting_appointment_ids": recheck.conflicting_ids},
            )

        taken = set(pinned)
        requirements = list(appointment.requirements)
        for index, requirement in enumerate(appointment.requirements):
            if requirement.pinned:
                continue
            for resource in ranking.get(index, []):
                if resource.id in taken:
                    continue
                check = self.detector.check_resources(
                    appointment.clinic_id, [resource.id], occupied, exclude_ids=[appointment.id]
                )
                if check.ok:
                    requirements[index] = requirement.pin(resource.id)
                    taken.add(resource.id)
                    break
            else:
                logger.warning(
                    f"No {requirement.kind} with {sorted(requirement.capabilities)} "
                    f"free for appointment {appointment.id}"
                )
                raise ResourceUnavailableError(
                    f"No qualifying {requirement.kind} is free for appointment {appointment.id}",
                    details={"kind": requirement.kind.value, "capabilities": sorted(requirement.capabilities)},
                )

        bound = [r.resource_id for r in requirements if r.resource_id not in pinned]
        appointment.requirements = tuple(requirements)
        if bound:
            logger.info(f"Allocated {bound} to appointment {appointment.id}")
            self.audit_log.record(
                AuditEntry(
                    clinic_id=appointment.clinic_id,
                    entity="appointment",
                    entity_id=appointment.id,
                    action="allocate",
                    actor=actor,
                    details={"resource_ids": bound},
                )
            )
        return appointment.resource_ids
