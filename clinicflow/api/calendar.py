"""Calendar view endpoint."""

from datetime import date

from fastapi import APIRouter, Depends, Query

from clinicflow.api.dependencies import get_clinic_id, http_error
from clinicflow.errors import SchedulingError
from clinicflow.models.api import AppointmentResponse, CalendarResponse, Slot
from clinicflow.services.availability import DateRange
from clinicflow.services.engine import ClinicEngine, get_engine

router = APIRouter()


@router.get("/calendar", response_model=CalendarResponse, tags=["Calendar"])
async def get_calendar(
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    provider_id: str | None = None,
    resource_id: str | None = None,
    appointment_type_id: str | None = None,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> CalendarResponse:
    """Committed appointments for a provider or resource, with open slots.

    Open slots are listed when both ``provider_id`` and ``appointment_type_id``
    are given. Both dates are inclusive clinic-local dates.
    """
    try:
        view = engine.calendar_view(
            clinic_id,
            DateRange(from_date, to_date),
            provider_id=provider_id,
            resource_id=resource_id,
            appointment_type_id=appointment_type_id,
        )
    except SchedulingError as e:
        raise http_error(e) from e
    return CalendarResponse(
        appointments=[AppointmentResponse.from_domain(a) for a in view.appointments],
        open_slots=[Slot.from_interval(slot) for slot in view.open_slots],
    )
