"""Request and response models for the HTTP API."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from clinicflow.models.appointment import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    Frequency,
    InstanceResult,
    InstanceStatus,
    RecurrenceRule,
    RecurrenceSeries,
)
from clinicflow.models.calendar import ResourceKind, ResourceRequirement
from clinicflow.models.visit import FlowState, Visit
from clinicflow.models.waitlist import OfferStatus, WaitlistEntry, WaitlistOffer, WaitlistStatus
from clinicflow.services.patient_flow import QueueSummary, WaitAlert
from clinicflow.utils.intervals import TimeInterval


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str


class Slot(BaseModel):
    start: datetime
    end: datetime

    @classmethod
    def from_interval(cls, interval: TimeInterval) -> "Slot":
        return cls(start=interval.start, end=interval.end)

    def to_interval(self) -> TimeInterval:
        return TimeInterval(self.start, self.end)


class RequirementModel(BaseModel):
    """A resource requirement; ``resource_id`` pins it to one resource."""

    kind: ResourceKind
    capabilities: list[str] = Field(default_factory=list)
    resource_id: str | None = None

    @classmethod
    def from_domain(cls, requirement: ResourceRequirement) -> "RequirementModel":
        return cls(
            kind=requirement.kind,
            capabilities=sorted(requirement.capabilities),
            resource_id=requirement.resource_id,
        )

    def to_domain(self) -> ResourceRequirement:
        return ResourceRequirement(self.kind, frozenset(self.capabilities), self.resource_id)


def requirements_to_domain(models: list[RequirementModel] | None) -> tuple[ResourceRequirement, ...] | None:
    if models is None:
        return None
    return tuple(model.to_domain() for model in models)


# Appointments


class RecurrenceModel(BaseModel):
    frequency: Frequency
    interval: int = 1
    count: int | None = None
    until: date | None = None
    days_of_week: list[int] = Field(default_factory=list)

    def to_domain(self) -> RecurrenceRule:
        return RecurrenceRule(self.frequency, self.interval, self.count, self.until, tuple(self.days_of_week))


class BookAppointmentRequest(BaseModel):
    """Request model for booking a single or recurring appointment."""

    patient_id: str
    provider_id: str
    appointment_type_id: str
    start: datetime
    duration_minutes: int | None = None
    requirements: list[RequirementModel] | None = None
    source: AppointmentSource = AppointmentSource.STAFF
    recurrence: RecurrenceModel | None = None
    horizon: int | None = Field(default=None, ge=1)
    actor: str = "front_desk"


class InstanceResultModel(BaseModel):
    index: int
    start: datetime
    end: datetime
    status: InstanceStatus
    appointment_id: str | None = None
    reason: str | None = None
    conflicting_appointment_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: InstanceResult) -> "InstanceResultModel":
        return cls(
            index=result.index,
            start=result.start,
            end=result.end,
            status=result.status,
            appointment_id=result.appointment_id,
            reason=result.reason,
            conflicting_appointment_ids=list(result.conflicting_ids),
        )


class BookAppointmentResponse(BaseModel):
    """Booked appointment ids, plus per-instance outcomes for a series."""

    appointment_ids: list[str]
    series_id: str | None = None
    instances: list[InstanceResultModel] = Field(default_factory=list)


class StatusChangeModel(BaseModel):
    from_status: AppointmentStatus | None
    to_status: AppointmentStatus
    at: datetime
    actor: str
    reason: str | None = None


class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    provider_id: str
    appointment_type_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus
    source: AppointmentSource
    requirements: list[RequirementModel]
    resource_ids: list[str]
    buffer_before_minutes: int
    buffer_after_minutes: int
    series_id: str | None = None
    cancellation_reason: str | None = None
    visit_id: str | None = None
    history: list[StatusChangeModel] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            provider_id=appointment.provider_id,
            appointment_type_id=appointment.appointment_type_id,
            start=appointment.start,
            end=appointment.end,
            status=appointment.status,
            source=appointment.source,
            requirements=[RequirementModel.from_domain(r) for r in appointment.requirements],
            resource_ids=list(appointment.resource_ids),
            buffer_before_minutes=appointment.buffer_before_minutes,
            buffer_after_minutes=appointment.buffer_after_minutes,
            series_id=appointment.series_id,
            cancellation_reason=appointment.cancellation_reason,
            visit_id=appointment.visit_id,
            history=[
                StatusChangeModel(
                    from_status=change.from_status,
                    to_status=change.to_status,
                    at=change.at,
                    actor=change.actor,
                    reason=change.reason,
                )
                for change in appointment.history
            ],
        )


class TransitionRequest(BaseModel):
    """Request model for moving an appointment to a new status."""

    status: AppointmentStatus
    reason: str | None = None
    actor: str = "front_desk"
    location_id: str = "main"


class RescheduleRequest(BaseModel):
    """Request model for moving an appointment to a new start time."""

    start: datetime
    actor: str = "front_desk"


class TransitionResponse(BaseModel):
    appointment_id: str
    status: AppointmentStatus
    visit_id: str | None = None


class AllocationResponse(BaseModel):
    appointment_id: str
    resource_ids: list[str]


# Series


class SeriesTemplateRequest(BaseModel):
    appointment_type_id: str | None = None
    duration_minutes: int | None = None
    requirements: list[RequirementModel] | None = None


class SeriesExtendRequest(BaseModel):
    horizon: int | None = Field(default=None, ge=1)
    actor: str = "front_desk"


class SeriesResponse(BaseModel):
    id: str
    patient_id: str
    provider_id: str
    appointment_type_id: str
    duration_minutes: int
    requirements: list[RequirementModel]
    generated: int
    exhausted: bool
    instance_ids: list[str]
    instances: list[InstanceResultModel] = Field(default_factory=list)

    @classmethod
    def from_domain(
        cls, series: RecurrenceSeries, instances: list[InstanceResult] | None = None
    ) -> "SeriesResponse":
        return cls(
            id=series.id,
            patient_id=series.patient_id,
            provider_id=series.provider_id,
            appointment_type_id=series.template.appointment_type_id,
            duration_minutes=series.template.duration_minutes,
            requirements=[RequirementModel.from_domain(r) for r in series.template.requirements],
            generated=series.generated,
            exhausted=series.exhausted,
            instance_ids=list(series.instance_ids),
            instances=[InstanceResultModel.from_domain(result) for result in instances or []],
        )


# Calendar


class CalendarResponse(BaseModel):
    """Committed appointments in the range, and open slots when requested."""

    appointments: list[AppointmentResponse]
    open_slots: list[Slot]


# Waitlist


class WaitlistEntryRequest(BaseModel):
    """Request model for adding a patient to the waitlist."""

    patient_id: str
    appointment_type_id: str
    provider_id: str | None = None
    windows: list[Slot] = Field(default_factory=list)
    urgent: bool = False
    no_show_count: int = Field(default=0, ge=0)
    expires_at: datetime | None = None


class OfferModel(BaseModel):
    id: str
    entry_id: str
    opening_id: str
    offered_at: datetime
    expires_at: datetime
    status: OfferStatus

    @classmethod
    def from_domain(cls, offer: WaitlistOffer) -> "OfferModel":
        return cls(
            id=offer.id,
            entry_id=offer.entry_id,
            opening_id=offer.opening_id,
            offered_at=offer.offered_at,
            expires_at=offer.expires_at,
            status=offer.status,
        )


class WaitlistEntryResponse(BaseModel):
    id: str
    patient_id: str
    appointment_type_id: str
    provider_id: str | None
    windows: list[Slot]
    urgent: bool
    no_show_count: int
    created_at: datetime
    expires_at: datetime | None
    status: WaitlistStatus
    appointment_id: str | None = None
    offer: OfferModel | None = None

    @classmethod
    def from_domain(cls, entry: WaitlistEntry, offer: WaitlistOffer | None = None) -> "WaitlistEntryResponse":
        return cls(
            id=entry.id,
            patient_id=entry.patient_id,
            appointment_type_id=entry.appointment_type_id,
            provider_id=entry.provider_id,
            windows=[Slot.from_interval(window) for window in entry.windows],
            urgent=entry.urgent,
            no_show_count=entry.no_show_count,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
            status=entry.status,
            appointment_id=entry.appointment_id,
            offer=OfferModel.from_domain(offer) if offer else None,
        )


class OpeningRequest(BaseModel):
    """An interval freed outside the normal cancellation path, e.g. a new provider session."""

    appointment_type_id: str
    provider_id: str
    start: datetime
    end: datetime
    requirements: list[RequirementModel] = Field(default_factory=list)


class OpeningResponse(BaseModel):
    candidate_ids: list[str]
    offer: OfferModel | None = None


# Visits and queue


class CheckInRequest(BaseModel):
    """Request model for a walk-in arrival."""

    patient_id: str
    location_id: str = "main"
    emergency: bool = False
    actor: str = "front_desk"


class VisitTransitionRequest(BaseModel):
    state: FlowState
    note: str | None = None
    actor: str = "front_desk"


class PriorityRequest(BaseModel):
    emergency: bool
    actor: str = "front_desk"


class FlowTransitionModel(BaseModel):
    state: FlowState
    at: datetime
    actor: str
    note: str | None = None


class VisitResponse(BaseModel):
    id: str
    patient_id: str
    location_id: str
    appointment_id: str | None
    state: FlowState
    emergency: bool
    arrived_at: datetime
    ticket_number: int
    history: list[FlowTransitionModel]

    @classmethod
    def from_domain(cls, visit: Visit) -> "VisitResponse":
        return cls(
            id=visit.id,
            patient_id=visit.patient_id,
            location_id=visit.location_id,
            appointment_id=visit.appointment_id,
            state=visit.state,
            emergency=visit.emergency,
            arrived_at=visit.arrived_at,
            ticket_number=visit.ticket.number,
            history=[
                FlowTransitionModel(state=t.state, at=t.at, actor=t.actor, note=t.note) for t in visit.history
            ],
        )


class QueueSummaryModel(BaseModel):
    counts: dict[str, int]
    waiting: int
    longest_wait_minutes: float
    average_wait_minutes: float

    @classmethod
    def from_domain(cls, summary: QueueSummary) -> "QueueSummaryModel":
        return cls(
            counts=summary.counts,
            waiting=summary.waiting,
            longest_wait_minutes=summary.longest_wait_minutes,
            average_wait_minutes=summary.average_wait_minutes,
        )


class QueueResponse(BaseModel):
    location_id: str
    visits: list[VisitResponse]
    summary: QueueSummaryModel


class WaitAlertModel(BaseModel):
    visit_id: str
    patient_id: str
    location_id: str
    state: FlowState
    minutes_in_state: float
    threshold_minutes: int

    @classmethod
    def from_domain(cls, alert: WaitAlert) -> "WaitAlertModel":
        return cls(
            visit_id=alert.visit_id,
            patient_id=alert.patient_id,
            location_id=alert.location_id,
            state=alert.state,
            minutes_in_state=alert.minutes_in_state,
            threshold_minutes=alert.threshold_minutes,
        )
