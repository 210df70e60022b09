"""Appointment and recurring series endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from clinicflow.api.dependencies import get_clinic_id, http_error
from clinicflow.errors import SchedulingError
from clinicflow.models.api import (
    AllocationResponse,
    AppointmentResponse,
    BookAppointmentRequest,
    BookAppointmentResponse,
    InstanceResultModel,
    RescheduleRequest,
    SeriesExtendRequest,
    SeriesResponse,
    SeriesTemplateRequest,
    TransitionRequest,
    TransitionResponse,
    requirements_to_domain,
)
from clinicflow.models.appointment import InstanceStatus
from clinicflow.services.appointments import BookingRequest
from clinicflow.services.engine import ClinicEngine, get_engine
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/appointments", response_model=BookAppointmentResponse, status_code=201, tags=["Appointments"])
async def book_appointment(
    request: BookAppointmentRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> BookAppointmentResponse:
    """Book an appointment, or a recurring series when ``recurrence`` is given.

    A single booking that conflicts fails with 409. A series always succeeds
    as a whole and reports each instance as booked or skipped.
    """
    booking = BookingRequest(
        patient_id=request.patient_id,
        provider_id=request.provider_id,
        appointment_type_id=request.appointment_type_id,
        start=request.start,
        requirements=requirements_to_domain(request.requirements),
        duration_minutes=request.duration_minutes,
        source=request.source,
    )
    try:
        if request.recurrence is None:
            appointment = await engine.appointments.book(clinic_id, booking, actor=request.actor)
            return BookAppointmentResponse(appointment_ids=[appointment.id])

        rule = request.recurrence.to_domain()
        series, results = await engine.appointments.book_series(
            clinic_id, booking, rule, horizon=request.horizon, actor=request.actor
        )
    except SchedulingError as e:
        logger.warning(f"Booking rejected for patient {request.patient_id} in clinic {clinic_id}: {e.code} {e.message}")
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Booking error for patient {request.patient_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to book appointment") from e

    return BookAppointmentResponse(
        appointment_ids=[r.appointment_id for r in results if r.status == InstanceStatus.BOOKED and r.appointment_id],
        series_id=series.id,
        instances=[InstanceResultModel.from_domain(result) for result in results],
    )


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse, tags=["Appointments"])
async def get_appointment(
    appointment_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> AppointmentResponse:
    try:
        appointment = engine.store.get(clinic_id, appointment_id)
    except SchedulingError as e:
        raise http_error(e) from e
    return AppointmentResponse.from_domain(appointment)


@router.post(
    "/appointments/{appointment_id}/transition", response_model=TransitionResponse, tags=["Appointments"]
)
async def transition_appointment(
    appointment_id: str,
    request: TransitionRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> TransitionResponse:
    """Move an appointment through its lifecycle (confirm, check in, cancel, ...)."""
    try:
        appointment = await engine.appointments.transition(
            clinic_id,
            appointment_id,
            request.status,
            actor=request.actor,
            reason=request.reason,
            location_id=request.location_id,
        )
    except SchedulingError as e:
        logger.warning(f"Transition of {appointment_id} to {request.status} rejected: {e.code} {e.message}")
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Transition error for appointment {appointment_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update appointment") from e

    return TransitionResponse(appointment_id=appointment.id, status=appointment.status, visit_id=appointment.visit_id)


@router.post(
    "/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse, tags=["Appointments"]
)
async def reschedule_appointment(
    appointment_id: str,
    request: RescheduleRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> AppointmentResponse:
    """Move a scheduled or confirmed appointment to a new start time."""
    try:
        appointment = await engine.appointments.reschedule(
            clinic_id, appointment_id, request.start, actor=request.actor
        )
    except SchedulingError as e:
        logger.warning(f"Reschedule of {appointment_id} rejected: {e.code} {e.message}")
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Reschedule error for appointment {appointment_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to reschedule appointment") from e

    return AppointmentResponse.from_domain(appointment)


@router.post(
    "/appointments/{appointment_id}/allocate", response_model=AllocationResponse, tags=["Appointments"]
)
async def allocate_resources(
    appointment_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> AllocationResponse:
    """Bind concrete resources to an appointment's "any chair" requirements now."""
    try:
        resource_ids = await engine.allocator.allocate(clinic_id, appointment_id, actor="front_desk")
    except SchedulingError as e:
        logger.warning(f"Allocation for {appointment_id} failed: {e.code} {e.message}")
        raise http_error(e) from e
    return AllocationResponse(appointment_id=appointment_id, resource_ids=list(resource_ids))


@router.get("/series/{series_id}", response_model=SeriesResponse, tags=["Series"])
async def get_series(
    series_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> SeriesResponse:
    try:
        series = engine.store.get_series(clinic_id, series_id)
    except SchedulingError as e:
        raise http_error(e) from e
    return SeriesResponse.from_domain(series)


@router.patch("/series/{series_id}/template", response_model=SeriesResponse, tags=["Series"])
async def update_series_template(
    series_id: str,
    request: SeriesTemplateRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> SeriesResponse:
    """Change future occurrences; instances already generated keep their own values."""
    try:
        series = engine.appointments.update_series_template(
            clinic_id,
            series_id,
            appointment_type_id=request.appointment_type_id,
            duration_minutes=request.duration_minutes,
            requirements=requirements_to_domain(request.requirements),
        )
    except SchedulingError as e:
        raise http_error(e) from e
    return SeriesResponse.from_domain(series)


@router.post("/series/{series_id}/extend", response_model=SeriesResponse, tags=["Series"])
async def extend_series(
    series_id: str,
    request: SeriesExtendRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> SeriesResponse:
    """Materialize the next batch of occurrences."""
    try:
        results = await engine.appointments.extend_series(
            clinic_id, series_id, horizon=request.horizon, actor=request.actor
        )
        series = engine.store.get_series(clinic_id, series_id)
    except SchedulingError as e:
        raise http_error(e) from e
    return SeriesResponse.from_domain(series, results)
