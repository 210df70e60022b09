"""Shared router dependencies and error translation."""

from fastapi import Depends, Header, HTTPException

from clinicflow.errors import NotFoundError, SchedulingError, ValidationError
from clinicflow.services.engine import ClinicEngine, get_engine
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)


def http_error(error: SchedulingError) -> HTTPException:
    """Translate a scheduling error into an HTTP error with a structured detail."""
    if isinstance(error, ValidationError):
        status_code = 422
    elif isinstance(error, NotFoundError):
        status_code = 404
    else:
        status_code = 409
    return HTTPException(status_code=status_code, detail=error.as_dict())


def get_clinic_id(
    x_clinic_id: str = Header(..., description="Clinic (tenant) the request acts on"),
    engine: ClinicEngine = Depends(get_engine),
) -> str:
    """Every request is scoped to a registered clinic."""
    if not engine.calendar.has_clinic(x_clinic_id):
        logger.warning(f"Request for unknown clinic: {x_clinic_id}")
        raise HTTPException(
            status_code=404, detail={"code": NotFoundError.code, "message": f"Clinic {x_clinic_id} not found"}
        )
    return x_clinic_id
