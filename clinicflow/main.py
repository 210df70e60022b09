"""Main FastAPI application."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinicflow import __version__
from clinicflow.api.appointments import router as appointments_router
from clinicflow.api.calendar import router as calendar_router
from clinicflow.api.endpoints import router
from clinicflow.api.visits import router as visits_router
from clinicflow.api.waitlist import router as waitlist_router
from clinicflow.services.demo_data import load_demo_clinic
from clinicflow.services.engine import ClinicEngine, get_engine
from clinicflow.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


async def maintenance_loop(engine: ClinicEngine) -> None:
    """Periodically expire waitlist offers and sweep no-shows."""
    while True:
        await asyncio.sleep(engine.config.maintenance_interval_seconds)
        try:
            report = await engine.run_maintenance()
            if report:
                logger.debug(f"Maintenance report: {report}")
        except Exception as e:
            logger.error(f"Maintenance run failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Same engine the routes resolve, overrides included
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    logger.info(f"ClinicFlow {__version__} starting up (allocation at {engine.config.allocation_stage})")
    if engine.config.load_demo_data:
        load_demo_clinic(engine.calendar)

    task = asyncio.create_task(maintenance_loop(engine))
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await engine.shutdown()
    logger.info("ClinicFlow shut down")


# Create FastAPI application
app = FastAPI(
    title="ClinicFlow",
    description=(
        "Appointment scheduling, resource allocation, waitlist management "
        "and patient flow tracking for multi-provider clinics."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Appointments", "description": "Booking and the appointment lifecycle."},
        {"name": "Series", "description": "Recurring appointment series."},
        {"name": "Calendar", "description": "Committed bookings and open slots."},
        {"name": "Waitlist", "description": "Waitlist entries and offers of reclaimed openings."},
        {"name": "Patient Flow", "description": "Arrivals, the live queue and wait-time alerts."},
        {"name": "Health", "description": "Service health monitoring and status checks."},
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)
app.include_router(appointments_router)
app.include_router(calendar_router)
app.include_router(waitlist_router)
app.include_router(visits_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clinicflow.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
