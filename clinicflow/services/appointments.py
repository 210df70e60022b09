"""Appointment booking and lifecycle management."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from clinicflow.config import SchedulingConfig
from clinicflow.errors import (
    ConflictError,
    GuardViolationError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from clinicflow.models.appointment import (
    APPOINTMENT_TRANSITIONS,
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    InstanceResult,
    InstanceStatus,
    RecurrenceRule,
    RecurrenceSeries,
    SeriesTemplate,
)
from clinicflow.models.calendar import ResourceRequirement
from clinicflow.services.allocation import ResourceAllocator
from clinicflow.services.appointment_store import InMemoryAppointmentStore
from clinicflow.services.availability import AvailabilityEngine
from clinicflow.services.calendar_store import CalendarSource, qualifying_resources
from clinicflow.services.collaborators import AuditEntry, AuditLog, Notification, NotificationDispatcher
from clinicflow.services.conflicts import ConflictDetector
from clinicflow.services.patient_flow import PatientFlowTracker
from clinicflow.services.recurrence import RecurrenceExpander
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

# Bookings may start slightly in the past to absorb clock skew between desks
PAST_GRACE = timedelta(minutes=5)

ReleaseListener = Callable[[Appointment, datetime], Awaitable[None]]


@dataclass
class BookingRequest:
    """What a caller asks to book.

    ``requirements`` replaces the appointment type's resource requirements
    when given; ``duration_minutes`` overrides the type's duration.
    """

    patient_id: str
    provider_id: str
    appointment_type_id: str
    start: datetime
    requirements: tuple[ResourceRequirement, ...] | None = None
    duration_minutes: int | None = None
    source: AppointmentSource = AppointmentSource.STAFF


class AppointmentService:
    """Owns booking and the appointment state machine.

    Every conflict-checked write runs inside the clinic's commit gate, which
    holds no await points. A booking that loses a race surfaces as
    ``ConflictError``; nothing here retries a write.
    """

    def __init__(
        self,
        calendar: CalendarSource,
        store: InMemoryAppointmentStore,
        detector: ConflictDetector,
        availability: AvailabilityEngine,
        expander: RecurrenceExpander,
        allocator: ResourceAllocator,
        flow: PatientFlowTracker,
        notifier: NotificationDispatcher,
        audit_log: AuditLog,
        config: SchedulingConfig,
        clock: Callable[[], datetime] | None = None,
    ):
        self.calendar = calendar
        self.store = store
        self.detector = detector
        self.availability = availability
        self.expander = expander
        self.allocator = allocator
        self.flow = flow
        self.notifier = notifier
        self.audit_log = audit_log
        self.config = config
        self.clock = clock or (lambda: datetime.now(UTC))
        self.release_listeners: list[ReleaseListener] = []

    # Booking

    def build_draft(self, clinic_id: str, request: BookingRequest) -> Appointment:
        """Validate a booking request into an uncommitted appointment.

        Raises:
            ValidationError: For malformed requests or unknown references
        """
        try:
            appointment_type = self.calendar.get_appointment_type(clinic_id, request.appointment_type_id)
            provider = self.calendar.get_provider(clinic_id, request.provider_id)
        except NotFoundError as e:
            raise ValidationError(e.message) from e

        missing = appointment_type.provider_capabilities - provider.capabilities
        if missing:
            raise ValidationError(
                f"Provider {provider.id} cannot perform {appointment_type.name}: missing {sorted(missing)}"
            )

        if request.start.tzinfo is None:
            raise ValidationError("Start time must carry a timezone offset")
        if request.start < self.clock() - PAST_GRACE:
            raise ValidationError("Appointment cannot be scheduled in the past")

        duration = request.duration_minutes
        if duration is None:
            duration = appointment_type.duration_minutes
        if not 0 < duration <= self.config.max_duration_minutes:
            raise ValidationError(f"Duration must be between 1 and {self.config.max_duration_minutes} minutes")
        buffers = (appointment_type.buffer_before_minutes, appointment_type.buffer_after_minutes)
        if max(buffers) > self.config.max_buffer_minutes:
            raise ValidationError(f"Buffers cannot exceed {self.config.max_buffer_minutes} minutes")

        requirements = request.requirements
        if requirements is None:
            requirements = appointment_type.resource_requirements
        self._validate_requirements(clinic_id, requirements)

        return Appointment(
            id=self.store.new_id(),
            clinic_id=clinic_id,
            patient_id=request.patient_id,
            provider_id=provider.id,
            appointment_type_id=appointment_type.id,
            start=request.start,
            end=request.start + timedelta(minutes=duration),
            requirements=tuple(requirements),
            buffer_before_minutes=appointment_type.buffer_before_minutes,
            buffer_after_minutes=appointment_type.buffer_after_minutes,
            source=request.source,
        )

    async def book(self, clinic_id: str, request: BookingRequest, actor: str = "system") -> Appointment:
        """Book a single appointment.

        Raises:
            ValidationError: Malformed request
            SlotUnavailableError: Outside working hours, a break or a blackout
            ConflictError: Provider, resource or patient double-booking
        """
        draft = self.build_draft(clinic_id, request)
        return await self._commit(draft, actor)

    async def _commit(self, draft: Appointment, actor: str) -> Appointment:
        if not self.availability.is_bookable(draft.clinic_id, draft.provider_id, draft.occupied, draft.requirements):
            raise SlotUnavailableError(
                f"{draft.start.isoformat()} - {draft.end.isoformat()} is outside provider or resource availability"
            )

        async with self.store.commit_gate(draft.clinic_id):
            result = self.detector.check_conflict(draft)
            if not result.ok:
                logger.warning(
                    f"Booking rejected for patient {draft.patient_id}: {result.reason} {result.conflicting_ids}"
                )
                result.raise_for_conflict()
            draft.record(AppointmentStatus.SCHEDULED, self.clock(), actor)
            self.store.add(draft)

        logger.info(
            f"Booked appointment {draft.id} for patient {draft.patient_id} with {draft.provider_id} "
            f"at {draft.start.isoformat()}"
        )
        self._audit(draft, "book", actor, {"start": draft.start.isoformat(), "source": draft.source.value})
        return draft

    async def reschedule(
        self,
        clinic_id: str,
        appointment_id: str,
        new_start: datetime,
        actor: str = "system",
        now: datetime | None = None,
    ) -> Appointment:
        """Move a scheduled or confirmed appointment, keeping its duration, buffers and resources.

        The old time is released to the waitlist like a cancellation would be.

        Raises:
            ValidationError: Naive or past start time
            GuardViolationError: The appointment is no longer scheduled or confirmed, or has started
            SlotUnavailableError: Outside working hours, a break or a blackout
            ConflictError: Provider, resource or patient double-booking at the new time
        """
        now = now or self.clock()
        appointment = self.store.get(clinic_id, appointment_id)
        if new_start.tzinfo is None:
            raise ValidationError("Start time must carry a timezone offset")
        if new_start < now - PAST_GRACE:
            raise ValidationError("Appointment cannot be moved into the past")

        moved = replace(appointment, start=new_start, end=new_start + (appointment.end - appointment.start))
        if not self.availability.is_bookable(clinic_id, moved.provider_id, moved.occupied, moved.requirements):
            raise SlotUnavailableError(
                f"{moved.start.isoformat()} - {moved.end.isoformat()} is outside provider or resource availability"
            )

        async with self.store.commit_gate(clinic_id):
            if appointment.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
                raise GuardViolationError(
                    f"Appointment {appointment_id} is {appointment.status} and cannot be rescheduled",
                    details={"status": appointment.status.value},
                )
            if appointment.start <= now:
                raise GuardViolationError(f"Appointment {appointment_id} has already started")
            result = self.detector.check_conflict(moved)
            if not result.ok:
                logger.warning(f"Reschedule of {appointment_id} rejected: {result.reason} {result.conflicting_ids}")
                result.raise_for_conflict()
            released = replace(appointment, history=list(appointment.history))
            appointment.start, appointment.end = moved.start, moved.end

        logger.info(
            f"Rescheduled appointment {appointment_id} from {released.start.isoformat()} "
            f"to {appointment.start.isoformat()}"
        )
        self._audit(
            appointment, "reschedule", actor, {"from": released.start.isoformat(), "to": appointment.start.isoformat()}
        )
        self.notifier.dispatch(
            Notification(
                clinic_id=clinic_id,
                event="appointment.rescheduled",
                patient_id=appointment.patient_id,
                payload={
                    "appointment_id": appointment.id,
                    "start": appointment.start.isoformat(),
                    "previous_start": released.start.isoformat(),
                },
            )
        )
        await self._release(released, now)
        return appointment

    # Recurring series

    async def book_series(
        self,
        clinic_id: str,
        request: BookingRequest,
        rule: RecurrenceRule,
        horizon: int | None = None,
        actor: str = "system",
    ) -> tuple[RecurrenceSeries, list[InstanceResult]]:
        """Create a series and commit its first batch of instances.

        Each instance is checked and committed on its own; a conflicting
        instance is reported as skipped and the rest still book.
        """
        self.expander.validate(rule)
        seed = self.build_draft(clinic_id, request)
        series = RecurrenceSeries(
            id=self.store.new_id(),
            clinic_id=clinic_id,
            patient_id=seed.patient_id,
            provider_id=seed.provider_id,
            rule=rule,
            template=SeriesTemplate(
                appointment_type_id=seed.appointment_type_id,
                duration_minutes=int((seed.end - seed.start).total_seconds() // 60),
                requirements=seed.requirements,
            ),
            seed_start=seed.start,
        )
        self.store.add_series(series)
        logger.info(
            f"Created series {series.id} ({rule.frequency}, every {rule.interval}) for patient {seed.patient_id}"
        )
        results = await self._generate(series, horizon or self.config.max_recurrence_instances, actor)
        return series, results

    async def extend_series(
        self, clinic_id: str, series_id: str, horizon: int | None = None, actor: str = "system"
    ) -> list[InstanceResult]:
        """Materialize the next batch of a series with its current template."""
        series = self.store.get_series(clinic_id, series_id)
        if series.exhausted:
            return []
        return await self._generate(series, horizon or self.config.max_recurrence_instances, actor)

    def update_series_template(
        self,
        clinic_id: str,
        series_id: str,
        appointment_type_id: str | None = None,
        duration_minutes: int | None = None,
        requirements: tuple[ResourceRequirement, ...] | None = None,
    ) -> RecurrenceSeries:
        """Change what future occurrences look like.

        Instances already generated keep their own type, duration and resources.
        """
        series = self.store.get_series(clinic_id, series_id)
        template = series.template
        if appointment_type_id is not None:
            try:
                appointment_type = self.calendar.get_appointment_type(clinic_id, appointment_type_id)
            except NotFoundError as e:
                raise ValidationError(e.message) from e
            template = replace(
                template,
                appointment_type_id=appointment_type.id,
                duration_minutes=appointment_type.duration_minutes if duration_minutes is None else duration_minutes,
                requirements=requirements if requirements is not None else appointment_type.resource_requirements,
            )
        if duration_minutes is not None:
            if not 0 < duration_minutes <= self.config.max_duration_minutes:
                raise ValidationError(f"Duration must be between 1 and {self.config.max_duration_minutes} minutes")
            template = replace(template, duration_minutes=duration_minutes)
        if requirements is not None:
            self._validate_requirements(clinic_id, requirements)
            template = replace(template, requirements=tuple(requirements))
        series.template = template
        logger.info(f"Series {series_id} template updated; {series.generated} instances unaffected")
        return series

    async def _generate(self, series: RecurrenceSeries, horizon: int, actor: str) -> list[InstanceResult]:
        appointment_type = self.calendar.get_appointment_type(series.clinic_id, series.template.appointment_type_id)
        seed = Appointment(
            id="",
            clinic_id=series.clinic_id,
            patient_id=series.patient_id,
            provider_id=series.provider_id,
            appointment_type_id=appointment_type.id,
            start=series.seed_start,
            end=series.seed_start + timedelta(minutes=series.template.duration_minutes),
            requirements=series.template.requirements,
            buffer_before_minutes=appointment_type.buffer_before_minutes,
            buffer_after_minutes=appointment_type.buffer_after_minutes,
            source=AppointmentSource.RECURRENCE,
            series_id=series.id,
        )

        results: list[InstanceResult] = []
        for cursor, draft in self.expander.expand(series.rule, seed, horizon, series.cursor, series.generated):
            draft = replace(draft, id=self.store.new_id())
            index = series.generated
            try:
                committed = await self._commit(draft, actor)
            except (ConflictError, SlotUnavailableError) as e:
                conflicting = tuple(e.conflicting_ids) if isinstance(e, ConflictError) else ()
                result = InstanceResult(
                    index, draft.start, draft.end, InstanceStatus.SKIPPED, None, e.message, conflicting
                )
                logger.info(f"Series {series.id} instance {index} skipped: {e.message}")
            else:
                series.instance_ids.append(committed.id)
                result = InstanceResult(index, draft.start, draft.end, InstanceStatus.BOOKED, committed.id)
            series.generated += 1
            series.cursor = cursor + 1
            series.results.append(result)
            results.append(result)

        series.exhausted = self._series_exhausted(series)
        return results

    def _series_exhausted(self, series: RecurrenceSeries) -> bool:
        if series.rule.count is not None:
            return series.generated >= series.rule.count
        tz = self.calendar.clinic_timezone(series.clinic_id)
        upcoming = self.expander.occurrences(series.rule, series.seed_start, tz, series.cursor)
        return next(upcoming, None) is None

    # State machine

    async def transition(
        self,
        clinic_id: str,
        appointment_id: str,
        target: AppointmentStatus,
        actor: str = "system",
        reason: str | None = None,
        now: datetime | None = None,
        location_id: str = "main",
    ) -> Appointment:
        """Move an appointment to ``target``.

        Raises:
            GuardViolationError: Illegal transition or check-in outside the arrival window
            ResourceUnavailableError: Allocation failed; the appointment keeps its state
            ValidationError: Cancellation without a reason
        """
        now = now or self.clock()
        appointment = self.store.get(clinic_id, appointment_id)
        if target == AppointmentStatus.CANCELLED and not (reason and reason.strip()):
            raise ValidationError("Cancellation reason is required")

        allocate = bool(appointment.unbound_requirements) and (
            target == AppointmentStatus.CHECKED_IN
            or (target == AppointmentStatus.CONFIRMED and self.config.allocation_stage == "confirmation")
        )
        ranking = self.allocator.rank(appointment) if allocate else None

        async with self.store.commit_gate(clinic_id):
            current = appointment.status
            if target not in APPOINTMENT_TRANSITIONS[current]:
                raise GuardViolationError(
                    f"Appointment {appointment_id} cannot move from {current} to {target}",
                    code="ILLEGAL_TRANSITION",
                    details={"status": current.value, "target": target.value},
                )
            if target == AppointmentStatus.CHECKED_IN:
                self._guard_arrival(appointment, now)
                self.flow.ensure_can_check_in(clinic_id, appointment.patient_id)
            if ranking is not None:
                self.allocator.bind(appointment, ranking, actor)
            if target == AppointmentStatus.CHECKED_IN:
                visit = self.flow.check_in(
                    clinic_id, location_id, appointment.patient_id, now, appointment_id=appointment.id, actor=actor
                )
                appointment.visit_id = visit.id
            if target == AppointmentStatus.CANCELLED:
                appointment.cancellation_reason = reason
            appointment.record(target, now, actor, reason)

        logger.info(f"Appointment {appointment_id} {current} -> {target} by {actor}")
        self._audit(appointment, target.value, actor, {"from": current.value, "reason": reason})
        await self._after_transition(appointment, target, now, actor)
        return appointment

    async def sweep_no_shows(self, clinic_id: str, now: datetime | None = None) -> list[Appointment]:
        """Mark confirmed appointments whose arrival window has elapsed as no-shows."""
        now = now or self.clock()
        late = timedelta(minutes=self.config.arrival_window_after_minutes)
        marked = []
        for appointment in self.store.list_appointments(clinic_id):
            if appointment.status != AppointmentStatus.CONFIRMED or appointment.start + late >= now:
                continue
            try:
                marked.append(
                    await self.transition(
                        clinic_id, appointment.id, AppointmentStatus.NO_SHOW, "system", "Arrival window elapsed", now
                    )
                )
            except GuardViolationError:
                # Checked in or cancelled by someone else since the scan
                continue
        return marked

    def _guard_arrival(self, appointment: Appointment, now: datetime) -> None:
        opens = appointment.start - timedelta(minutes=self.config.arrival_window_before_minutes)
        closes = appointment.start + timedelta(minutes=self.config.arrival_window_after_minutes)
        if not opens <= now <= closes:
            raise GuardViolationError(
                f"Check-in for appointment {appointment.id} is only allowed between "
                f"{opens.isoformat()} and {closes.isoformat()}",
                code="OUTSIDE_ARRIVAL_WINDOW",
                details={"window_start": opens.isoformat(), "window_end": closes.isoformat()},
            )

    async def _after_transition(
        self, appointment: Appointment, target: AppointmentStatus, now: datetime, actor: str
    ) -> None:
        if appointment.visit_id and target in (
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        ):
            self.flow.close(appointment.clinic_id, appointment.visit_id, now, f"appointment {target}", actor)

        if target in (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW):
            self.notifier.dispatch(
                Notification(
                    clinic_id=appointment.clinic_id,
                    event=f"appointment.{target.value}",
                    patient_id=appointment.patient_id,
                    payload={"appointment_id": appointment.id, "start": appointment.start.isoformat()},
                )
            )

        if not target.is_active:
            await self._release(appointment, now)

    async def _release(self, appointment: Appointment, now: datetime) -> None:
        """Tell listeners a future slot opened up."""
        if appointment.start <= now:
            return
        for listener in self.release_listeners:
            try:
                await listener(appointment, now)
            except Exception as e:
                logger.error(f"Release listener failed for appointment {appointment.id}: {e}", exc_info=True)

    def _validate_requirements(self, clinic_id: str, requirements: tuple[ResourceRequirement, ...]) -> None:
        for requirement in requirements:
            try:
                pool = qualifying_resources(self.calendar, clinic_id, requirement)
            except NotFoundError as e:
                raise ValidationError(e.message) from e
            if not pool:
                raise ValidationError(
                    f"No {requirement.kind} in this clinic has capabilities {sorted(requirement.capabilities)}"
                )

    def _audit(self, appointment: Appointment, action: str, actor: str, details: dict) -> None:
        self.audit_log.record(
            AuditEntry(
                clinic_id=appointment.clinic_id,
                entity="appointment",
                entity_id=appointment.id,
                action=action,
                actor=actor,
                at=self.clock(),
                details=details,
            )
        )
