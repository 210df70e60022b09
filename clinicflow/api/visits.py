"""Patient flow endpoints: arrivals, the live queue and wait alerts."""

from fastapi import APIRouter, Depends

from clinicflow.api.dependencies import get_clinic_id, http_error
from clinicflow.errors import SchedulingError
from clinicflow.models.api import (
    CheckInRequest,
    PriorityRequest,
    QueueResponse,
    QueueSummaryModel,
    VisitResponse,
    VisitTransitionRequest,
    WaitAlertModel,
)
from clinicflow.services.engine import ClinicEngine, get_engine
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/visits", response_model=VisitResponse, status_code=201, tags=["Patient Flow"])
async def check_in_walk_in(
    request: CheckInRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> VisitResponse:
    """Register a walk-in arrival.

    Patients with an appointment are checked in through the appointment's
    ``checked_in`` transition instead.
    """
    try:
        visit = engine.walk_in(
            clinic_id, request.location_id, request.patient_id, emergency=request.emergency, actor=request.actor
        )
    except SchedulingError as e:
        logger.warning(f"Walk-in rejected for patient {request.patient_id}: {e.message}")
        raise http_error(e) from e
    return VisitResponse.from_domain(visit)


@router.get("/visits/alerts", response_model=list[WaitAlertModel], tags=["Patient Flow"])
async def wait_alerts(
    location_id: str | None = None,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> list[WaitAlertModel]:
    """Visits that have been in their current state longer than the configured threshold."""
    alerts = engine.flow.wait_alerts(clinic_id, engine.now(), location_id)
    return [WaitAlertModel.from_domain(alert) for alert in alerts]


@router.get("/visits/{visit_id}", response_model=VisitResponse, tags=["Patient Flow"])
async def get_visit(
    visit_id: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> VisitResponse:
    try:
        return VisitResponse.from_domain(engine.flow.get(clinic_id, visit_id))
    except SchedulingError as e:
        raise http_error(e) from e


@router.post("/visits/{visit_id}/transition", response_model=VisitResponse, tags=["Patient Flow"])
async def transition_visit(
    visit_id: str,
    request: VisitTransitionRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> VisitResponse:
    try:
        visit = await engine.transition_visit(clinic_id, visit_id, request.state, request.actor, request.note)
    except SchedulingError as e:
        logger.warning(f"Visit {visit_id} transition to {request.state} rejected: {e.message}")
        raise http_error(e) from e
    return VisitResponse.from_domain(visit)


@router.post("/visits/{visit_id}/priority", response_model=VisitResponse, tags=["Patient Flow"])
async def set_priority(
    visit_id: str,
    request: PriorityRequest,
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> VisitResponse:
    try:
        visit = engine.flow.set_priority(clinic_id, visit_id, request.emergency, engine.now(), request.actor)
    except SchedulingError as e:
        raise http_error(e) from e
    return VisitResponse.from_domain(visit)


@router.get("/queue", response_model=QueueResponse, tags=["Patient Flow"])
async def get_queue(
    location_id: str = "main",
    clinic_id: str = Depends(get_clinic_id),
    engine: ClinicEngine = Depends(get_engine),
) -> QueueResponse:
    """Called patients first, then waiting patients in serving order."""
    queue = engine.flow.get_queue(clinic_id, location_id)
    summary = engine.flow.queue_summary(clinic_id, location_id, engine.now())
    return QueueResponse(
        location_id=location_id,
        visits=[VisitResponse.from_domain(visit) for visit in queue],
        summary=QueueSummaryModel.from_domain(summary),
    )
