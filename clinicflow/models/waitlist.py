"""Waitlist data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from clinicflow.models.calendar import ResourceRequirement
from clinicflow.utils.intervals import TimeInterval


class WaitlistStatus(StrEnum):
    WAITING = "waiting"
    OFFERED = "offered"
    EXPIRED = "expired"
    BOOKED = "booked"
    WITHDRAWN = "withdrawn"


class OfferStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class OpeningStatus(StrEnum):
    OPEN = "open"
    FILLED = "filled"
    RELEASED = "released"


@dataclass
class WaitlistEntry:
    """Demand for a slot that is currently full.

    An empty ``windows`` list accepts any time.
    """

    id: str
    clinic_id: str
    patient_id: str
    appointment_type_id: str
    created_at: datetime
    windows: tuple[TimeInterval, ...] = ()
    provider_id: str | None = None
    urgent: bool = False
    no_show_count: int = 0
    expires_at: datetime | None = None
    status: WaitlistStatus = WaitlistStatus.WAITING
    appointment_id: str | None = None

    def accepts(self, interval: TimeInterval) -> bool:
        return not self.windows or any(window.contains(interval) for window in self.windows)


@dataclass
class Opening:
    """A reclaimed interval being offered down the ranked waitlist."""

    id: str
    clinic_id: str
    appointment_type_id: str
    provider_id: str
    interval: TimeInterval
    requirements: tuple[ResourceRequirement, ...] = ()
    candidate_ids: list[str] = field(default_factory=list)
    offered_ids: list[str] = field(default_factory=list)
    status: OpeningStatus = OpeningStatus.OPEN
    current_offer_id: str | None = None


@dataclass
class WaitlistOffer:
    """A time-boxed, revocable proposal of an opening to one entry."""

    id: str
    clinic_id: str
    entry_id: str
    opening_id: str
    offered_at: datetime
    expires_at: datetime
    status: OfferStatus = OfferStatus.PENDING
