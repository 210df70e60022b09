"""Demo clinic reference data for local development and the front desk CLI."""

from datetime import time

from clinicflow.models.calendar import (
    AppointmentType,
    Provider,
    Resource,
    ResourceKind,
    ResourceRequirement,
    WorkingHours,
)
from clinicflow.services.calendar_store import InMemoryCalendarStore
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_CLINIC_ID = "demo-clinic"


def load_demo_clinic(calendar: InMemoryCalendarStore, clinic_id: str = DEMO_CLINIC_ID) -> None:
    """Register a small dental clinic: two providers, three chairs and an imaging room."""
    calendar.register_clinic(clinic_id, timezone="America/New_York")

    weekday_hours = WorkingHours.weekly(time(9), time(17), breaks=((time(12), time(13)),))
    calendar.upsert_provider(
        Provider(
            id="dr-lee",
            clinic_id=clinic_id,
            name="Dr. Amelia Lee",
            hours=weekday_hours,
            capabilities=frozenset({"general", "hygiene", "imaging"}),
        )
    )
    calendar.upsert_provider(
        Provider(
            id="hyg-ortiz",
            clinic_id=clinic_id,
            name="Sam Ortiz, RDH",
            hours=WorkingHours.weekly(time(8), time(14), weekdays=(0, 1, 2, 3)),
            capabilities=frozenset({"hygiene"}),
        )
    )

    for number in (1, 2):
        calendar.upsert_resource(
            Resource(id=f"chair-{number}", clinic_id=clinic_id, name=f"Chair {number}", kind=ResourceKind.CHAIR)
        )
    calendar.upsert_resource(
        Resource(
            id="chair-3",
            clinic_id=clinic_id,
            name="Chair 3 (imaging)",
            kind=ResourceKind.CHAIR,
            capabilities=frozenset({"xray"}),
        )
    )
    calendar.upsert_resource(
        Resource(
            id="pano-room",
            clinic_id=clinic_id,
            name="Panoramic X-ray room",
            kind=ResourceKind.ROOM,
            capabilities=frozenset({"panoramic"}),
            hours=WorkingHours.weekly(time(10), time(16)),
        )
    )

    calendar.upsert_appointment_type(
        AppointmentType(
            id="cleaning",
            clinic_id=clinic_id,
            name="Cleaning",
            duration_minutes=45,
            provider_capabilities=frozenset({"hygiene"}),
            resource_requirements=(ResourceRequirement(ResourceKind.CHAIR),),
            buffer_after_minutes=15,
        )
    )
    calendar.upsert_appointment_type(
        AppointmentType(
            id="checkup",
            clinic_id=clinic_id,
            name="Checkup",
            duration_minutes=30,
            provider_capabilities=frozenset({"general"}),
            resource_requirements=(ResourceRequirement(ResourceKind.CHAIR),),
        )
    )
    calendar.upsert_appointment_type(
        AppointmentType(
            id="bitewing-xray",
            clinic_id=clinic_id,
            name="Bitewing X-rays",
            duration_minutes=20,
            provider_capabilities=frozenset({"imaging"}),
            resource_requirements=(ResourceRequirement(ResourceKind.CHAIR, frozenset({"xray"})),),
            buffer_before_minutes=5,
            buffer_after_minutes=5,
        )
    )
    calendar.upsert_appointment_type(
        AppointmentType(
            id="panoramic-xray",
            clinic_id=clinic_id,
            name="Panoramic X-ray",
            duration_minutes=30,
            provider_capabilities=frozenset({"imaging"}),
            resource_requirements=(ResourceRequirement(ResourceKind.ROOM, frozenset({"panoramic"}), "pano-room"),),
        )
    )
    logger.info(f"Loaded demo clinic {clinic_id}")
