"""Conflict detection for proposed and existing appointments."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from clinicflow.errors import ConflictError
from clinicflow.models.appointment import Appointment
from clinicflow.models.calendar import ResourceRequirement
from clinicflow.services.appointment_store import InMemoryAppointmentStore
from clinicflow.services.calendar_store import CalendarSource, qualifying_resources
from clinicflow.utils.intervals import TimeInterval


class ConflictKind(StrEnum):
    PROVIDER = "provider"
    RESOURCE = "resource"
    PATIENT = "patient"
    RESOURCE_POOL = "resource_pool"


_CONFLICT_CODES = {
    ConflictKind.PROVIDER: "PROVIDER_CONFLICT",
    ConflictKind.RESOURCE: "RESOURCE_CONFLICT",
    ConflictKind.PATIENT: "PATIENT_CONFLICT",
    ConflictKind.RESOURCE_POOL: "RESOURCE_POOL_EXHAUSTED",
}


@dataclass(frozen=True)
class ConflictDetail:
    kind: ConflictKind
    appointment_ids: tuple[str, ...]
    resource_id: str | None = None

    def describe(self) -> str:
        if self.kind == ConflictKind.PROVIDER:
            return "Provider has a scheduling conflict at this time"
        if self.kind == ConflictKind.PATIENT:
            return "Patient already has an appointment at this time"
        if self.kind == ConflictKind.RESOURCE_POOL:
            return "No qualifying resource remains free at this time"
        return f"Resource {self.resource_id} is already booked at this time"


@dataclass(frozen=True)
class ConflictResult:
    """``ok`` when nothing conflicts, otherwise one detail per conflict class hit."""

    conflicts: tuple[ConflictDetail, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.conflicts

    @property
    def conflicting_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for conflict in self.conflicts:
            for appointment_id in conflict.appointment_ids:
                seen.setdefault(appointment_id, None)
        return list(seen)

    @property
    def reason(self) -> str:
        return "; ".join(conflict.describe() for conflict in self.conflicts)

    def raise_for_conflict(self) -> None:
        if self.ok:
            return
        raise ConflictError(
            self.reason,
            code=_CONFLICT_CODES[self.conflicts[0].kind],
            conflicting_ids=self.conflicting_ids,
            details={
                "conflicts": [
                    {"kind": c.kind.value, "appointment_ids": list(c.appointment_ids), "resource_id": c.resource_id}
                    for c in self.conflicts
                ]
            },
        )


class ConflictDetector:
    """Checks provider, resource and patient double-booking.

    Only active appointments are considered, with half-open intervals.
    Provider and resource checks use the occupied interval (buffers
    included); the patient check uses the appointment time itself.
    """

    def __init__(self, store: InMemoryAppointmentStore, calendar: CalendarSource):
        self.store = store
        self.calendar = calendar

    def check_conflict(self, appointment: Appointment, exclude_ids: Iterable[str] = ()) -> ConflictResult:
        excluded = {appointment.id, *exclude_ids}
        occupied = appointment.occupied
        others = [
            other
            for other in self.store.list_appointments(appointment.clinic_id, window=occupied)
            if other.id not in excluded
        ]

        conflicts: list[ConflictDetail] = []

        provider_hits = tuple(o.id for o in others if o.provider_id == appointment.provider_id)
        if provider_hits:
            conflicts.append(ConflictDetail(ConflictKind.PROVIDER, provider_hits))

        for resource_id in appointment.resource_ids:
            resource_hits = tuple(o.id for o in others if resource_id in o.resource_ids)
            if resource_hits:
                conflicts.append(ConflictDetail(ConflictKind.RESOURCE, resource_hits, resource_id))

        patient_hits = tuple(
            o.id for o in others if o.patient_id == appointment.patient_id and o.interval.overlaps(appointment.interval)
        )
        if patient_hits:
            conflicts.append(ConflictDetail(ConflictKind.PATIENT, patient_hits))

        conflicts.extend(self._check_pools(appointment, others))
        return ConflictResult(tuple(conflicts))

    def check_resources(
        self,
        clinic_id: str,
        resource_ids: Iterable[str],
        occupied: TimeInterval,
        exclude_ids: Iterable[str] = (),
    ) -> ConflictResult:
        """Resource-only check, used before binding a resource late."""
        excluded = set(exclude_ids)
        others = [o for o in self.store.list_appointments(clinic_id, window=occupied) if o.id not in excluded]
        conflicts = []
        for resource_id in resource_ids:
            hits = tuple(o.id for o in others if resource_id in o.resource_ids)
            if hits:
                conflicts.append(ConflictDetail(ConflictKind.RESOURCE, hits, resource_id))
        return ConflictResult(tuple(conflicts))

    def _check_pools(self, appointment: Appointment, others: list[Appointment]) -> list[ConflictDetail]:
        """Every unbound requirement overlapping in time needs its own free qualifying resource.

        The occupied interval is cut wherever another appointment starts or
        ends, and each piece is checked as a bipartite matching of unbound
        requirements to qualifying resources nobody has bound. Booking order
        does not matter: a plain cleaning never counts against the only
        X-ray chair while a plain chair is still free.
        """
        if not appointment.unbound_requirements:
            return []

        occupied = appointment.occupied
        cuts = {occupied.start, occupied.end}
        for other in others:
            cuts.update(t for t in (other.occupied.start, other.occupied.end) if occupied.start < t < occupied.end)
        edges = sorted(cuts)

        own_pools = [self._pool(appointment.clinic_id, r) for r in appointment.unbound_requirements]
        for start, end in zip(edges, edges[1:]):
            segment = TimeInterval(start, end)
            present = [other for other in others if other.occupied.overlaps(segment)]
            bound = set(appointment.resource_ids).union(*(other.resource_ids for other in present))
            demands = [pool - bound for pool in own_pools]
            for other in present:
                demands.extend(self._pool(other.clinic_id, r) - bound for r in other.unbound_requirements)
            if assign_distinct(demands):
                continue

            wanted = set().union(*own_pools)
            holders = tuple(
                other.id
                for other in present
                if set(other.resource_ids) & wanted
                or any(self._pool(other.clinic_id, r) & wanted for r in other.unbound_requirements)
            )
            return [ConflictDetail(ConflictKind.RESOURCE_POOL, holders)]
        return []

    def _pool(self, clinic_id: str, requirement: ResourceRequirement) -> set[str]:
        return {resource.id for resource in qualifying_resources(self.calendar, clinic_id, requirement)}


def assign_distinct(demands: list[set[str]]) -> bool:
    """Whether each demand can take a different resource from its own set (augmenting paths)."""
    holder: dict[str, int] = {}

    def augment(index: int, visited: set[str]) -> bool:
        for resource_id in sorted(demands[index]):
            if resource_id in visited:
                continue
            visited.add(resource_id)
            if resource_id not in holder or augment(holder[resource_id], visited):
                holder[resource_id] = index
                return True
        return False

    return all(augment(index, set()) for index in range(len(demands)))
