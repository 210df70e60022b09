"""Patient flow tracking, the daily queue and wait-time alerts."""

from dataclasses import dataclass
from datetime import datetime

from cuid2 import cuid_wrapper

from clinicflow.config import SchedulingConfig
from clinicflow.errors import GuardViolationError, NotFoundError
from clinicflow.models.visit import FLOW_TRANSITIONS, FlowState, FlowTransition, QueueTicket, Visit
from clinicflow.services.calendar_store import CalendarSource
from clinicflow.services.collaborators import AuditEntry, AuditLog
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

QUEUE_STATES = (FlowState.CALLED, FlowState.WAITING)


@dataclass(frozen=True)
class WaitAlert:
    """A visit that has been in its current state longer than allowed."""

    visit_id: str
    patient_id: str
    location_id: str
    state: FlowState
    minutes_in_state: float
    threshold_minutes: int


@dataclass(frozen=True)
class QueueSummary:
    location_id: str
    counts: dict[str, int]
    waiting: int
    longest_wait_minutes: float
    average_wait_minutes: float


class PatientFlowTracker:
    """One short-lived state machine per visit.

    Transitions are last-write-wins; the history is only ever appended to.
    """

    def __init__(self, calendar: CalendarSource, config: SchedulingConfig, audit_log: AuditLog):
        self.calendar = calendar
        self.config = config
        self.audit_log = audit_log
        self._visits: dict[str, dict[str, Visit]] = {}
        self._tickets: dict[tuple[str, str, str], int] = {}

    def check_in(
        self,
        clinic_id: str,
        location_id: str,
        patient_id: str,
        now: datetime,
        appointment_id: str | None = None,
        emergency: bool = False,
        actor: str = "system",
    ) -> Visit:
        """Open a visit in ``arrived`` and issue a queue ticket.

        Ticket numbers restart on each clinic-local calendar day.
        """
        tz = self.calendar.clinic_timezone(clinic_id)
        self.ensure_can_check_in(clinic_id, patient_id)

        key = (clinic_id, location_id, now.astimezone(tz).date().isoformat())
        self._tickets[key] = self._tickets.get(key, 0) + 1

        visit = Visit(
            id=cuid(),
            clinic_id=clinic_id,
            location_id=location_id,
            patient_id=patient_id,
            arrived_at=now,
            ticket=QueueTicket(number=self._tickets[key], issued_at=now),
            appointment_id=appointment_id,
            emergency=emergency,
            history=[FlowTransition(FlowState.ARRIVED, now, actor)],
        )
        self._visits.setdefault(clinic_id, {})[visit.id] = visit
        self._audit(visit, "arrived", actor, now, {"appointment_id": appointment_id, "ticket": visit.ticket.number})
        logger.info(f"Visit {visit.id} opened for patient {patient_id} at {location_id}, ticket {visit.ticket.number}")
        return visit

    def ensure_can_check_in(self, clinic_id: str, patient_id: str) -> None:
        """A patient has at most one open visit per clinic."""
        for visit in self._visits.get(clinic_id, {}).values():
            if visit.patient_id == patient_id and not visit.state.is_terminal:
                raise GuardViolationError(
                    f"Patient {patient_id} is already in the clinic (visit {visit.id})",
                    code="ALREADY_CHECKED_IN",
                    details={"visit_id": visit.id},
                )

    def get(self, clinic_id: str, visit_id: str) -> Visit:
        visit = self._visits.get(clinic_id, {}).get(visit_id)
        if visit is None:
            raise NotFoundError(f"Visit {visit_id} not found")
        return visit

    def list_visits(self, clinic_id: str, location_id: str | None = None, include_closed: bool = False) -> list[Visit]:
        return [
            visit
            for visit in self._visits.get(clinic_id, {}).values()
            if (location_id is None or visit.location_id == location_id)
            and (include_closed or not visit.state.is_terminal)
        ]

    def transition(
        self,
        clinic_id: str,
        visit_id: str,
        target: FlowState,
        now: datetime,
        actor: str = "system",
        note: str | None = None,
    ) -> Visit:
        """Advance a visit.

        Raises:
            GuardViolationError: If ``target`` is not reachable from the current state
        """
        visit = self.get(clinic_id, visit_id)
        if target not in FLOW_TRANSITIONS[visit.state]:
            raise GuardViolationError(f"Visit {visit_id} cannot move from {visit.state} to {target}")
        visit.history.append(FlowTransition(target, now, actor, note))
        self._audit(visit, target.value, actor, now, {"note": note} if note else {})
        logger.info(f"Visit {visit_id} moved to {target}")
        return visit

    def set_priority(
        self, clinic_id: str, visit_id: str, emergency: bool, now: datetime, actor: str = "system"
    ) -> Visit:
        """Flag or unflag a visit as an emergency.

        Only queue selection changes; arrival time and history are untouched.
        """
        visit = self.get(clinic_id, visit_id)
        if visit.state.is_terminal:
            raise GuardViolationError(f"Visit {visit_id} is closed")
        visit.emergency = emergency
        self._audit(visit, "priority", actor, now, {"emergency": emergency})
        return visit

    def close(self, clinic_id: str, visit_id: str, now: datetime, reason: str, actor: str = "system") -> Visit:
        """Close a visit because its appointment finished.

        Visits that were never seated leave without being seen; others depart.
        """
        visit = self.get(clinic_id, visit_id)
        if visit.state.is_terminal:
            return visit
        unseen = visit.state in (FlowState.ARRIVED, FlowState.WAITING, FlowState.CALLED)
        final = FlowState.LEFT_WITHOUT_BEING_SEEN if unseen else FlowState.DEPARTED
        visit.history.append(FlowTransition(final, now, actor, reason))
        self._audit(visit, final.value, actor, now, {"reason": reason})
        return visit

    def get_queue(self, clinic_id: str, location_id: str) -> list[Visit]:
        """Visits in ``called`` then ``waiting`` order.

        Waiting visits are ordered by arrival (ticket number breaks ties), with
        emergency visits moved ahead of other waiting visits but never ahead of
        anyone already called.
        """
        queued = [visit for visit in self.list_visits(clinic_id, location_id) if visit.state in QUEUE_STATES]
        return sorted(
            queued,
            key=lambda v: (
                0 if v.state == FlowState.CALLED else 1,
                0 if v.emergency and v.state == FlowState.WAITING else 1,
                v.arrived_at,
                v.ticket.number,
            ),
        )

    def wait_alerts(self, clinic_id: str, now: datetime, location_id: str | None = None) -> list[WaitAlert]:
        alerts = []
        for visit in self.list_visits(clinic_id, location_id):
            threshold = self.config.wait_thresholds.get(visit.state.value)
            if threshold is None:
                continue
            minutes = visit.time_in_state(now).total_seconds() / 60
            if minutes > threshold:
                alerts.append(
                    WaitAlert(visit.id, visit.patient_id, visit.location_id, visit.state, round(minutes, 1), threshold)
                )
        return sorted(alerts, key=lambda a: -a.minutes_in_state)

    def queue_summary(self, clinic_id: str, location_id: str, now: datetime) -> QueueSummary:
        visits = self.list_visits(clinic_id, location_id)
        counts: dict[str, int] = {}
        for visit in visits:
            counts[visit.state.value] = counts.get(visit.state.value, 0) + 1

        waits = [v.time_in_state(now).total_seconds() / 60 for v in visits if v.state == FlowState.WAITING]
        return QueueSummary(
            location_id=location_id,
            counts=counts,
            waiting=len(waits),
            longest_wait_minutes=round(max(waits), 1) if waits else 0.0,
            average_wait_minutes=round(sum(waits) / len(waits), 1) if waits else 0.0,
        )

    def _audit(self, visit: Visit, action: str, actor: str, at: datetime, details: dict) -> None:
        self.audit_log.record(
            AuditEntry(
                clinic_id=visit.clinic_id,
                entity="visit",
                entity_id=visit.id,
                action=action,
                actor=actor,
                at=at,
                details=details,
            )
        )
