"""Waitlist endpoints."""

from fastapi import APIRouter, Depends

from clinicflow.api.dependencies import get_clinic_id, http_error
from clinicflow.errors import SchedulingError
from clinicflow.models.api import (
    AppointmentResponse,
    OfferModel,
    OpeningRequest,
    OpeningResponse,
    WaitlistEntryRequest,
    WaitlistEntryResponse,
)
from clinicflow.models.waitlist import WaitlistStatus
from clinicflow.services.engine import ClinicEngine, get_engine
from clinicflow.utils.intervals import TimeInterval
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _entry_response(engine: ClinicEngine, clinic_id: str, entry_id: str) -> WaitlistEntryResponse:
    entry = engine.waitlist.get_entry(clinic_id, entry_id)
    return WaitlistEntryResponse.from_domain(entry, engine.waitlist.current_offer(clinic_id, entry.id))


@router.post("/waitlist", response_model=WaitlistEntryResponse, status_code=201, tags=["Waitlist"])
async def add_waitlist_entry(
    request: WaitlistEntryRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    try:
        entry = engine.waitlist.add_entry(
            clinic_id,
            request.patient_id,
            request.appointment_type_id,
            windows=tuple(window.to_interval() for window in request.windows),
            provider_id=request.provider_id,
            urgent=request.urgent,
            no_show_count=request.no_show_count,
            expires_at=request.expires_at,
        )
    except SchedulingError as e:
        logger.warning(f"Waitlist entry rejected for patient {request.patient_id}: {e.message}")
        raise http_error(e) from e
    return WaitlistEntryResponse.from_domain(entry)


@router.get("/waitlist", response_model=list[WaitlistEntryResponse], tags=["Waitlist"])
async def list_waitlist(
    status: WaitlistStatus | None = None,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> list[WaitlistEntryResponse]:
    return [
        WaitlistEntryResponse.from_domain(entry, engine.waitlist.current_offer(clinic_id, entry.id))
        for entry in engine.waitlist.list_entries(clinic_id, status)
    ]


@router.get("/waitlist/{entry_id}", response_model=WaitlistEntryResponse, tags=["Waitlist"])
async def get_waitlist_entry(
    entry_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    try:
        return _entry_response(engine, clinic_id, entry_id)
    except SchedulingError as e:
        raise http_error(e) from e


@router.delete("/waitlist/{entry_id}", response_model=WaitlistEntryResponse, tags=["Waitlist"])
async def withdraw_waitlist_entry(
    entry_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    """Withdraw an entry; a pending offer moves on to the next candidate."""
    try:
        entry = engine.waitlist.withdraw(clinic_id, entry_id)
    except SchedulingError as e:
        raise http_error(e) from e
    return WaitlistEntryResponse.from_domain(entry)


@router.post("/waitlist/openings", response_model=OpeningResponse, status_code=201, tags=["Waitlist"])
async def offer_opening(
    request: OpeningRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> OpeningResponse:
    """Offer an interval to the waitlist outside the cancellation path."""
    try:
        ranked = await engine.waitlist.offer_opening(
            clinic_id,
            request.appointment_type_id,
            TimeInterval(request.start, request.end),
            request.provider_id,
            tuple(requirement.to_domain() for requirement in request.requirements),
        )
    except SchedulingError as e:
        raise http_error(e) from e

    offer = engine.waitlist.current_offer(clinic_id, ranked[0].id) if ranked else None
    return OpeningResponse(
        candidate_ids=[entry.id for entry in ranked],
        offer=OfferModel.from_domain(offer) if offer else None,
    )


@router.post(
    "/waitlist/{entry_id}/offers/{offer_id}/accept", response_model=AppointmentResponse, tags=["Waitlist"]
)
async def accept_offer(
    entry_id: str,
    offer_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> AppointmentResponse:
    """Accept an offer and book the slot; a second accept answers 409 STALE_OFFER."""
    try:
        appointment = await engine.waitlist.accept_offer(clinic_id, entry_id, offer_id)
    except SchedulingError as e:
        logger.warning(f"Offer {offer_id} accept failed: {e.code} {e.message}")
        raise http_error(e) from e
    return AppointmentResponse.from_domain(appointment)


@router.post(
    "/waitlist/{entry_id}/offers/{offer_id}/decline", response_model=WaitlistEntryResponse, tags=["Waitlist"]
)
async def decline_offer(
    entry_id: str,
    offer_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    try:
        engine.waitlist.decline_offer(clinic_id, entry_id, offer_id)
        return _entry_response(engine, clinic_id, entry_id)
    except SchedulingError as e:
        raise http_error(e) from e
