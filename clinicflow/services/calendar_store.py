"""Clinic calendar store: providers, resources and appointment types per clinic."""

from typing import Protocol
from zoneinfo import ZoneInfo

from clinicflow.errors import NotFoundError, ValidationError
from clinicflow.models.calendar import AppointmentType, Provider, Resource, ResourceRequirement
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)


class CalendarSource(Protocol):
    """Read-only view of clinic reference data.

    This allows pluggable sources:
    - In-memory registry fed by the Staff and Resources management services
    - A pull-through client against those services
    """

    def clinic_timezone(self, clinic_id: str) -> ZoneInfo:
        """Timezone in which the clinic's working hours are expressed."""
        ...

    def get_provider(self, clinic_id: str, provider_id: str) -> Provider:
        """Get a provider of the clinic.

        Raises:
            NotFoundError: If the provider does not exist in this clinic
        """
        ...

    def get_resource(self, clinic_id: str, resource_id: str) -> Resource:
        """Get a resource of the clinic."""
        ...

    def get_appointment_type(self, clinic_id: str, appointment_type_id: str) -> AppointmentType:
        """Get an appointment type of the clinic."""
        ...

    def list_resources(self, clinic_id: str) -> list[Resource]:
        """All resources of the clinic."""
        ...


class InMemoryCalendarStore:
    """In-memory clinic calendar.

    Every collection is keyed by clinic first, so a lookup with the wrong
    clinic id behaves exactly like a lookup of an unknown id.
    """

    def __init__(self) -> None:
        self._timezones: dict[str, ZoneInfo] = {}
        self._providers: dict[str, dict[str, Provider]] = {}
        self._resources: dict[str, dict[str, Resource]] = {}
        self._types: dict[str, dict[str, AppointmentType]] = {}

    def register_clinic(self, clinic_id: str, timezone: str = "UTC") -> None:
        self._timezones[clinic_id] = ZoneInfo(timezone)
        self._providers.setdefault(clinic_id, {})
        self._resources.setdefault(clinic_id, {})
        self._types.setdefault(clinic_id, {})
        logger.info(f"Registered clinic {clinic_id} ({timezone})")

    def upsert_provider(self, provider: Provider) -> None:
        self._clinic(self._providers, provider.clinic_id)[provider.id] = provider

    def upsert_resource(self, resource: Resource) -> None:
        self._clinic(self._resources, resource.clinic_id)[resource.id] = resource

    def upsert_appointment_type(self, appointment_type: AppointmentType) -> None:
        for requirement in appointment_type.resource_requirements:
            if requirement.pinned:
                self.get_resource(appointment_type.clinic_id, requirement.resource_id or "")
        self._clinic(self._types, appointment_type.clinic_id)[appointment_type.id] = appointment_type

    def has_clinic(self, clinic_id: str) -> bool:
        return clinic_id in self._timezones

    def clinic_timezone(self, clinic_id: str) -> ZoneInfo:
        if clinic_id not in self._timezones:
            raise NotFoundError(f"Clinic {clinic_id} not found")
        return self._timezones[clinic_id]

    def get_provider(self, clinic_id: str, provider_id: str) -> Provider:
        provider = self._providers.get(clinic_id, {}).get(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    def get_resource(self, clinic_id: str, resource_id: str) -> Resource:
        resource = self._resources.get(clinic_id, {}).get(resource_id)
        if resource is None:
            raise NotFoundError(f"Resource {resource_id} not found")
        return resource

    def get_appointment_type(self, clinic_id: str, appointment_type_id: str) -> AppointmentType:
        appointment_type = self._types.get(clinic_id, {}).get(appointment_type_id)
        if appointment_type is None:
            raise NotFoundError(f"Appointment type {appointment_type_id} not found")
        return appointment_type

    def list_providers(self, clinic_id: str) -> list[Provider]:
        return sorted(self._providers.get(clinic_id, {}).values(), key=lambda p: p.id)

    def list_resources(self, clinic_id: str) -> list[Resource]:
        return sorted(self._resources.get(clinic_id, {}).values(), key=lambda r: r.id)

    def _clinic(self, collection: dict, clinic_id: str) -> dict:
        if clinic_id not in self._timezones:
            raise NotFoundError(f"Clinic {clinic_id} not found")
        return collection[clinic_id]


def qualifying_resources(
    calendar: CalendarSource, clinic_id: str, requirement: ResourceRequirement
) -> list[Resource]:
    """Resources of the clinic that satisfy ``requirement``.

    A pinned requirement qualifies only its own resource, and that resource
    must match the requirement's kind and capabilities.
    """
    if requirement.pinned:
        resource = calendar.get_resource(clinic_id, requirement.resource_id or "")
        if not resource.satisfies(requirement):
            raise ValidationError(
                f"Resource {resource.id} does not provide {requirement.kind} "
                f"with capabilities {sorted(requirement.capabilities)}"
            )
        return [resource]
    return [resource for resource in calendar.list_resources(clinic_id) if resource.satisfies(requirement)]
