"""In-memory appointment arena with a per-clinic commit gate."""

import asyncio

from cuid2 import cuid_wrapper

from clinicflow.errors import NotFoundError
from clinicflow.models.appointment import Appointment, RecurrenceSeries
from clinicflow.utils.intervals import TimeInterval

cuid = cuid_wrapper()


class InMemoryAppointmentStore:
    """Appointments and recurrence series, referenced by opaque id.

    Appointments are never removed; cancellation is a status change. Writes
    that must be checked against other appointments (booking, transitions,
    resource binding) happen inside ``commit_gate(clinic_id)``. The gate is
    held only for the check-then-write itself.
    """

    def __init__(self) -> None:
        self._appointments: dict[str, dict[str, Appointment]] = {}
        self._series: dict[str, dict[str, RecurrenceSeries]] = {}
        self._gates: dict[str, asyncio.Lock] = {}

    def commit_gate(self, clinic_id: str) -> asyncio.Lock:
        """Lock serializing conflict-checked writes for one clinic."""
        gate = self._gates.get(clinic_id)
        if gate is None:
            gate = self._gates.setdefault(clinic_id, asyncio.Lock())
        return gate

    def new_id(self) -> str:
        return cuid()

    def add(self, appointment: Appointment) -> None:
        self._appointments.setdefault(appointment.clinic_id, {})[appointment.id] = appointment

    def get(self, clinic_id: str, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(clinic_id, {}).get(appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def list_appointments(
        self,
        clinic_id: str,
        *,
        provider_id: str | None = None,
        resource_id: str | None = None,
        patient_id: str | None = None,
        window: TimeInterval | None = None,
        include_inactive: bool = False,
    ) -> list[Appointment]:
        """Appointments of one clinic matching every given filter, ordered by start."""
        matches = []
        for appointment in list(self._appointments.get(clinic_id, {}).values()):
            if not include_inactive and not appointment.is_active:
                continue
            if provider_id is not None and appointment.provider_id != provider_id:
                continue
            if resource_id is not None and resource_id not in appointment.resource_ids:
                continue
            if patient_id is not None and appointment.patient_id != patient_id:
                continue
            if window is not None and not appointment.occupied.overlaps(window):
                continue
            matches.append(appointment)
        return sorted(matches, key=lambda a: (a.start, a.id))

    def clinic_ids(self) -> list[str]:
        """Clinics holding any appointments, for periodic maintenance."""
        return list(self._appointments)

    def add_series(self, series: RecurrenceSeries) -> None:
        self._series.setdefault(series.clinic_id, {})[series.id] = series

    def get_series(self, clinic_id: str, series_id: str) -> RecurrenceSeries:
        series = self._series.get(clinic_id, {}).get(series_id)
        if series is None:
            raise NotFoundError(f"Recurrence series {series_id} not found")
        return series
