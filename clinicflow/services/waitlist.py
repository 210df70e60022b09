"""Waitlist: ranked demand offered reclaimed openings."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from clinicflow.config import SchedulingConfig
from clinicflow.errors import (
    ConflictError,
    GuardViolationError,
    NotFoundError,
    SchedulingError,
    SlotUnavailableError,
    StaleOfferError,
    ValidationError,
)
from clinicflow.models.appointment import Appointment, AppointmentSource
from clinicflow.models.calendar import ResourceRequirement
from clinicflow.models.waitlist import (
    OfferStatus,
    Opening,
    OpeningStatus,
    WaitlistEntry,
    WaitlistOffer,
    WaitlistStatus,
)
from clinicflow.services.appointments import AppointmentService, BookingRequest
from clinicflow.services.calendar_store import CalendarSource
from clinicflow.services.collaborators import AuditEntry, AuditLog, Notification, NotificationDispatcher
from clinicflow.utils.intervals import TimeInterval
from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

CLOSED_ENTRY_STATUSES = (WaitlistStatus.BOOKED, WaitlistStatus.EXPIRED, WaitlistStatus.WITHDRAWN)


class WaitlistManager:
    """Maintains prioritized demand and works openings down the ranked list.

    An offer is a soft reservation: it does not block direct booking of the
    slot, and acceptance books through the normal commit gate. Offer state
    changes happen without awaiting in between check and update, so two
    accepts of the same offer cannot both pass the pending check.
    """

    def __init__(
        self,
        calendar: CalendarSource,
        appointments: AppointmentService,
        notifier: NotificationDispatcher,
        audit_log: AuditLog,
        config: SchedulingConfig,
        clock: Callable[[], datetime] | None = None,
    ):
        self.calendar = calendar
        self.appointments = appointments
        self.notifier = notifier
        self.audit_log = audit_log
        self.config = config
        self.clock = clock or (lambda: datetime.now(UTC))
        self._entries: dict[str, dict[str, WaitlistEntry]] = {}
        self._offers: dict[str, dict[str, WaitlistOffer]] = {}
        self._openings: dict[str, dict[str, Opening]] = {}

    def clinic_ids(self) -> list[str]:
        return list(self._entries)

    # Entries

    def add_entry(
        self,
        clinic_id: str,
        patient_id: str,
        appointment_type_id: str,
        windows: tuple[TimeInterval, ...] = (),
        provider_id: str | None = None,
        urgent: bool = False,
        no_show_count: int = 0,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> WaitlistEntry:
        try:
            self.calendar.get_appointment_type(clinic_id, appointment_type_id)
            if provider_id is not None:
                self.calendar.get_provider(clinic_id, provider_id)
        except NotFoundError as e:
            raise ValidationError(e.message) from e
        if no_show_count < 0:
            raise ValidationError("No-show count cannot be negative")

        now = now or self.clock()
        if expires_at is not None and expires_at <= now:
            raise ValidationError("Waitlist entry cannot expire in the past")

        entry = WaitlistEntry(
            id=cuid(),
            clinic_id=clinic_id,
            patient_id=patient_id,
            appointment_type_id=appointment_type_id,
            created_at=now,
            windows=tuple(windows),
            provider_id=provider_id,
            urgent=urgent,
            no_show_count=no_show_count,
            expires_at=expires_at,
        )
        self._entries.setdefault(clinic_id, {})[entry.id] = entry
        self._audit(clinic_id, "waitlist_entry", entry.id, "add", {"patient_id": patient_id, "urgent": urgent})
        logger.info(f"Waitlist entry {entry.id} added for patient {patient_id} ({appointment_type_id})")
        return entry

    def get_entry(self, clinic_id: str, entry_id: str) -> WaitlistEntry:
        entry = self._entries.get(clinic_id, {}).get(entry_id)
        if entry is None:
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        return entry

    def list_entries(self, clinic_id: str, status: WaitlistStatus | None = None) -> list[WaitlistEntry]:
        entries = self._entries.get(clinic_id, {}).values()
        return sorted(
            (e for e in entries if status is None or e.status == status),
            key=lambda e: (e.created_at, e.id),
        )

    def get_offer(self, clinic_id: str, offer_id: str) -> WaitlistOffer:
        offer = self._offers.get(clinic_id, {}).get(offer_id)
        if offer is None:
            raise NotFoundError(f"Offer {offer_id} not found")
        return offer

    def get_opening(self, clinic_id: str, opening_id: str) -> Opening:
        opening = self._openings.get(clinic_id, {}).get(opening_id)
        if opening is None:
            raise NotFoundError(f"Opening {opening_id} not found")
        return opening

    def current_offer(self, clinic_id: str, entry_id: str) -> WaitlistOffer | None:
        for offer in self._offers.get(clinic_id, {}).values():
            if offer.entry_id == entry_id and offer.status == OfferStatus.PENDING:
                return offer
        return None

    def withdraw(self, clinic_id: str, entry_id: str, now: datetime | None = None) -> WaitlistEntry:
        """Take an entry off the waitlist, passing any pending offer on."""
        now = now or self.clock()
        entry = self.get_entry(clinic_id, entry_id)
        if entry.status in CLOSED_ENTRY_STATUSES:
            raise GuardViolationError(f"Waitlist entry {entry_id} is already {entry.status}")

        offer = self.current_offer(clinic_id, entry_id)
        entry.status = WaitlistStatus.WITHDRAWN
        if offer is not None:
            offer.status = OfferStatus.WITHDRAWN
            self._offer_next(self.get_opening(clinic_id, offer.opening_id), now)
        self._audit(clinic_id, "waitlist_entry", entry.id, "withdraw", {})
        return entry

    # Ranking and offers

    def score(self, entry: WaitlistEntry, now: datetime) -> float:
        """Weighted priority: time waited in days, less a penalty per past no-show."""
        waited_days = max((now - entry.created_at).total_seconds(), 0) / 86400
        return waited_days * self.config.wait_weight - entry.no_show_count * self.config.no_show_penalty

    def rank(
        self,
        clinic_id: str,
        appointment_type_id: str,
        interval: TimeInterval,
        provider_id: str | None = None,
        now: datetime | None = None,
    ) -> list[WaitlistEntry]:
        """Eligible entries, best first.

        Urgent entries always come first. Entries whose acceptable windows do
        not contain the interval are excluded outright.
        """
        now = now or self.clock()
        eligible = [
            entry
            for entry in self._entries.get(clinic_id, {}).values()
            if entry.status == WaitlistStatus.WAITING
            and entry.appointment_type_id == appointment_type_id
            and (entry.provider_id is None or provider_id is None or entry.provider_id == provider_id)
            and (entry.expires_at is None or entry.expires_at > now)
            and entry.accepts(interval)
        ]
        return sorted(eligible, key=lambda e: (not e.urgent, -self.score(e, now), e.created_at, e.id))

    async def offer_opening(
        self,
        clinic_id: str,
        appointment_type_id: str,
        interval: TimeInterval,
        provider_id: str,
        requirements: tuple[ResourceRequirement, ...] = (),
        now: datetime | None = None,
    ) -> list[WaitlistEntry]:
        """Rank candidates for an opening and offer it to the first of them."""
        now = now or self.clock()
        ranked = self.rank(clinic_id, appointment_type_id, interval, provider_id, now)
        opening = Opening(
            id=cuid(),
            clinic_id=clinic_id,
            appointment_type_id=appointment_type_id,
            provider_id=provider_id,
            interval=interval,
            requirements=requirements,
            candidate_ids=[entry.id for entry in ranked],
        )
        self._openings.setdefault(clinic_id, {})[opening.id] = opening
        logger.info(f"Opening {opening.id} at {interval.start.isoformat()} has {len(ranked)} waitlist candidates")
        self._offer_next(opening, now)
        return ranked

    async def accept_offer(
        self, clinic_id: str, entry_id: str, offer_id: str, now: datetime | None = None
    ) -> Appointment:
        """Turn a pending offer into a booked appointment.

        Raises:
            StaleOfferError: The offer was already accepted, declined, withdrawn or has expired
            ConflictError: The slot was booked directly in the meantime
            ConflictError: The patient is already booked at that time; the opening moves on
        """
        now = now or self.clock()
        offer = self.get_offer(clinic_id, offer_id)
        if offer.entry_id != entry_id:
            raise NotFoundError(f"Offer {offer_id} not found for waitlist entry {entry_id}")
        if offer.status != OfferStatus.PENDING:
            raise StaleOfferError(f"Offer {offer_id} is {offer.status}", details={"offer_status": offer.status.value})
        if offer.expires_at <= now:
            self._expire_offer(offer, now)
            raise StaleOfferError(f"Offer {offer_id} expired at {offer.expires_at.isoformat()}")

        # Consume before the first await
        offer.status = OfferStatus.ACCEPTED
        entry = self.get_entry(clinic_id, entry_id)
        opening = self.get_opening(clinic_id, offer.opening_id)
        opening.current_offer_id = None

        request = BookingRequest(
            patient_id=entry.patient_id,
            provider_id=opening.provider_id,
            appointment_type_id=opening.appointment_type_id,
            start=opening.interval.start,
            requirements=opening.requirements,
            duration_minutes=int(opening.interval.duration.total_seconds() // 60),
            source=AppointmentSource.WAITLIST,
        )
        try:
            appointment = await self.appointments.book(clinic_id, request, actor=f"waitlist:{entry.id}")
        except (ConflictError, SlotUnavailableError, ValidationError) as e:
            entry.status = WaitlistStatus.WAITING
            if self._patient_cannot_take(e):
                # The slot is still free; only this patient can't use it
                logger.warning(f"Offer {offer_id} accepted but patient cannot take the slot: {e.message}")
                self._offer_next(opening, now)
            else:
                opening.status = OpeningStatus.RELEASED
                logger.warning(f"Offer {offer_id} accepted but slot no longer bookable: {e.message}")
            raise

        entry.status = WaitlistStatus.BOOKED
        entry.appointment_id = appointment.id
        opening.status = OpeningStatus.FILLED
        self._audit(clinic_id, "waitlist_offer", offer.id, "accept", {"appointment_id": appointment.id})
        logger.info(f"Offer {offer_id} accepted; appointment {appointment.id} booked for entry {entry_id}")
        return appointment

    def decline_offer(self, clinic_id: str, entry_id: str, offer_id: str, now: datetime | None = None) -> WaitlistEntry:
        """Decline an offer; the entry keeps its place for future openings."""
        now = now or self.clock()
        offer = self.get_offer(clinic_id, offer_id)
        if offer.entry_id != entry_id:
            raise NotFoundError(f"Offer {offer_id} not found for waitlist entry {entry_id}")
        if offer.status != OfferStatus.PENDING:
            raise StaleOfferError(f"Offer {offer_id} is {offer.status}", details={"offer_status": offer.status.value})

        offer.status = OfferStatus.DECLINED
        entry = self.get_entry(clinic_id, entry_id)
        entry.status = WaitlistStatus.WAITING
        self._audit(clinic_id, "waitlist_offer", offer.id, "decline", {})
        self._offer_next(self.get_opening(clinic_id, offer.opening_id), now)
        return entry

    def expire(self, clinic_id: str, now: datetime | None = None) -> dict[str, int]:
        """Periodic re-evaluation of offer and entry expiry."""
        now = now or self.clock()
        expired_offers = 0
        for offer in list(self._offers.get(clinic_id, {}).values()):
            if offer.status == OfferStatus.PENDING and offer.expires_at <= now:
                self._expire_offer(offer, now)
                expired_offers += 1

        expired_entries = 0
        for entry in self._entries.get(clinic_id, {}).values():
            if entry.status == WaitlistStatus.WAITING and entry.expires_at is not None and entry.expires_at <= now:
                entry.status = WaitlistStatus.EXPIRED
                expired_entries += 1

        if expired_offers or expired_entries:
            logger.info(f"Clinic {clinic_id}: expired {expired_offers} offers and {expired_entries} waitlist entries")
        return {"offers": expired_offers, "entries": expired_entries}

    @staticmethod
    def _patient_cannot_take(error: SchedulingError) -> bool:
        """True when the only thing in the way is the patient's own overlapping booking."""
        if not isinstance(error, ConflictError):
            return False
        kinds = {conflict["kind"] for conflict in error.details.get("conflicts", [])}
        return kinds == {"patient"}

    def _expire_offer(self, offer: WaitlistOffer, now: datetime) -> None:
        offer.status = OfferStatus.EXPIRED
        entry = self.get_entry(offer.clinic_id, offer.entry_id)
        if entry.status == WaitlistStatus.OFFERED:
            entry.status = WaitlistStatus.WAITING
        self._audit(offer.clinic_id, "waitlist_offer", offer.id, "expire", {})
        self._offer_next(self.get_opening(offer.clinic_id, offer.opening_id), now)

    def _offer_next(self, opening: Opening, now: datetime) -> WaitlistOffer | None:
        """Offer the opening to the next still-eligible candidate, or release it."""
        opening.current_offer_id = None
        if opening.status != OpeningStatus.OPEN:
            return None

        while len(opening.offered_ids) < len(opening.candidate_ids):
            entry_id = opening.candidate_ids[len(opening.offered_ids)]
            opening.offered_ids.append(entry_id)
            entry = self.get_entry(opening.clinic_id, entry_id)
            if entry.status != WaitlistStatus.WAITING or (entry.expires_at is not None and entry.expires_at <= now):
                continue

            offer = WaitlistOffer(
                id=cuid(),
                clinic_id=opening.clinic_id,
                entry_id=entry.id,
                opening_id=opening.id,
                offered_at=now,
                expires_at=now + timedelta(minutes=self.config.offer_ttl_minutes),
            )
            self._offers.setdefault(opening.clinic_id, {})[offer.id] = offer
            entry.status = WaitlistStatus.OFFERED
            opening.current_offer_id = offer.id
            self.notifier.dispatch(
                Notification(
                    clinic_id=opening.clinic_id,
                    event="waitlist.offer",
                    patient_id=entry.patient_id,
                    payload={
                        "entry_id": entry.id,
                        "offer_id": offer.id,
                        "start": opening.interval.start.isoformat(),
                        "expires_at": offer.expires_at.isoformat(),
                    },
                )
            )
            self._audit(opening.clinic_id, "waitlist_offer", offer.id, "offer", {"entry_id": entry.id})
            logger.info(f"Opening {opening.id} offered to entry {entry.id} until {offer.expires_at.isoformat()}")
            return offer

        opening.status = OpeningStatus.RELEASED
        logger.info(f"Opening {opening.id} released to general availability")
        return None

    def _audit(self, clinic_id: str, entity: str, entity_id: str, action: str, details: dict) -> None:
        self.audit_log.record(
            AuditEntry(
                clinic_id=clinic_id,
                entity=entity,
                entity_id=entity_id,
                action=action,
                actor="waitlist",
                at=self.clock(),
                details=details,
            )
        )
