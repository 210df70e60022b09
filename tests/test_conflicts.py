"""Tests for conflict detection and the no-double-booking guarantee."""

import asyncio
import random
from datetime import timedelta

import pytest
from conftest import CLINIC, MONDAY, OTHER_CLINIC, at, booking

from clinicflow.errors import ConflictError, NotFoundError, SchedulingError
from clinicflow.models.appointment import AppointmentStatus
from clinicflow.models.calendar import ResourceKind, ResourceRequirement
from clinicflow.services.conflicts import ConflictKind


def assert_no_double_booking(engine):
    """No two active appointments share a provider or resource over overlapping occupied time."""
    active = engine.store.list_appointments(CLINIC)
    for i, first in enumerate(active):
        for second in active[i + 1 :]:
            if first.occupied.overlaps(second.occupied):
                assert first.provider_id != second.provider_id, (first.id, second.id)
                assert not set(first.resource_ids) & set(second.resource_ids), (first.id, second.id)
            if first.interval.overlaps(second.interval):
                assert first.patient_id != second.patient_id, (first.id, second.id)


class TestConflictDetection:
    """Tests for ConflictDetector through booking."""

    @pytest.mark.asyncio
    async def test_provider_double_booking_rejected(self, engine):
        first = await engine.appointments.book(CLINIC, booking(patient_id="p1", start=at(MONDAY, 10)))
        with pytest.raises(ConflictError) as exc_info:
            await engine.appointments.book(CLINIC, booking(patient_id="p2", start=at(MONDAY, 10, 15)))

        assert exc_info.value.code == "PROVIDER_CONFLICT"
        assert exc_info.value.conflicting_ids == [first.id]
        assert exc_info.value.as_dict()["conflicting_appointment_ids"] == [first.id]

    @pytest.mark.asyncio
    async def test_back_to_back_is_not_a_conflict(self, engine):
        """Test that [10:00, 10:30) and [10:30, 11:00) can both be booked."""
        await engine.appointments.book(CLINIC, booking(patient_id="p1", start=at(MONDAY, 10)))
        second = await engine.appointments.book(CLINIC, booking(patient_id="p2", start=at(MONDAY, 10, 30)))
        assert second.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_buffers_extend_provider_occupancy(self, engine):
        await engine.appointments.book(CLINIC, booking(patient_id="p1", appointment_type_id="buffered"))
        with pytest.raises(ConflictError):
            await engine.appointments.book(CLINIC, booking(patient_id="p2", start=at(MONDAY, 10, 30)))
        with pytest.raises(ConflictError):
            await engine.appointments.book(CLINIC, booking(patient_id="p3", start=at(MONDAY, 9, 30)))
        await engine.appointments.book(CLINIC, booking(patient_id="p2", start=at(MONDAY, 10, 45)))

    @pytest.mark.asyncio
    async def test_patient_overlap_is_hard_block(self, engine):
        await engine.appointments.book(CLINIC, booking(patient_id="p1", provider_id="dr-a"))
        with pytest.raises(ConflictError) as exc_info:
            await engine.appointments.book(
                CLINIC, booking(patient_id="p1", provider_id="dr-b", start=at(MONDAY, 10, 15))
            )
        assert exc_info.value.code == "PATIENT_CONFLICT"

    @pytest.mark.asyncio
    async def test_pinned_resource_conflict(self, engine):
        first = await engine.appointments.book(
            CLINIC, booking(patient_id="p1", provider_id="dr-a", appointment_type_id="consult")
        )
        with pytest.raises(ConflictError) as exc_info:
            await engine.appointments.book(
                CLINIC, booking(patient_id="p2", provider_id="dr-b", appointment_type_id="consult")
            )
        assert exc_info.value.code == "RESOURCE_CONFLICT"
        assert first.id in exc_info.value.conflicting_ids

    @pytest.mark.asyncio
    async def test_unbound_pool_capacity(self, engine):
        """Test that "any chair" bookings stop once bound plus unbound demand uses every chair."""
        chair_1 = (ResourceRequirement(ResourceKind.CHAIR, resource_id="chair-1"),)
        await engine.appointments.book(CLINIC, booking(patient_id="p1", provider_id="dr-d", requirements=chair_1))
        await engine.appointments.book(
            CLINIC, booking(patient_id="p2", provider_id="dr-a", appointment_type_id="cleaning")
        )
        await engine.appointments.book(
            CLINIC, booking(patient_id="p3", provider_id="dr-b", appointment_type_id="cleaning")
        )

        with pytest.raises(ConflictError) as exc_info:
            await engine.appointments.book(
                CLINIC, booking(patient_id="p4", provider_id="dr-c", appointment_type_id="cleaning")
            )
        assert exc_info.value.code == "RESOURCE_POOL_EXHAUSTED"

    @pytest.mark.asyncio
    async def test_pool_capacity_ignores_booking_order(self, engine):
        """Test that two plain cleanings do not starve a later X-ray while a plain chair is still free."""
        for patient_id, provider_id in (("p1", "dr-a"), ("p2", "dr-b")):
            await engine.appointments.book(
                CLINIC, booking(patient_id=patient_id, provider_id=provider_id, appointment_type_id="cleaning")
            )
        xray = await engine.appointments.book(
            CLINIC, booking(patient_id="p3", provider_id="dr-c", appointment_type_id="xray")
        )
        assert xray.status == AppointmentStatus.SCHEDULED

        any_chair = (ResourceRequirement(ResourceKind.CHAIR),)
        with pytest.raises(ConflictError) as exc_info:
            await engine.appointments.book(
                CLINIC, booking(patient_id="p4", provider_id="dr-d", requirements=any_chair)
            )
        assert exc_info.value.code == "RESOURCE_POOL_EXHAUSTED"
        assert xray.id in exc_info.value.conflicting_ids

    @pytest.mark.asyncio
    async def test_pool_demand_counted_per_overlap(self, engine):
        """Test that unbound bookings which never overlap each other share one chair."""
        chair_1 = (ResourceRequirement(ResourceKind.CHAIR, resource_id="chair-1"),)
        await engine.appointments.book(CLINIC, booking(patient_id="p1", provider_id="dr-d", requirements=chair_1))
        await engine.appointments.book(
            CLINIC,
            booking(patient_id="p2", provider_id="dr-a", appointment_type_id="cleaning", start=at(MONDAY, 9, 40)),
        )
        await engine.appointments.book(
            CLINIC,
            booking(patient_id="p3", provider_id="dr-b", appointment_type_id="cleaning", start=at(MONDAY, 10, 10)),
        )
        appointment = await engine.appointments.book(
            CLINIC, booking(patient_id="p4", provider_id="dr-c", appointment_type_id="cleaning")
        )
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert_no_double_booking(engine)

    @pytest.mark.asyncio
    async def test_cancelled_appointments_do_not_conflict(self, engine):
        first = await engine.appointments.book(CLINIC, booking(patient_id="p1"))
        await engine.appointments.transition(CLINIC, first.id, AppointmentStatus.CANCELLED, reason="Sick")
        second = await engine.appointments.book(CLINIC, booking(patient_id="p2"))
        assert second.start == first.start

    @pytest.mark.asyncio
    async def test_check_conflict_excludes_self(self, engine):
        appointment = await engine.appointments.book(CLINIC, booking())
        assert engine.detector.check_conflict(appointment).ok

    @pytest.mark.asyncio
    async def test_result_lists_every_conflict_class(self, engine):
        existing = await engine.appointments.book(CLINIC, booking(patient_id="p1", appointment_type_id="consult"))
        draft = engine.appointments.build_draft(CLINIC, booking(patient_id="p1", appointment_type_id="consult"))

        result = engine.detector.check_conflict(draft)
        assert not result.ok
        assert {c.kind for c in result.conflicts} == {
            ConflictKind.PROVIDER,
            ConflictKind.RESOURCE,
            ConflictKind.PATIENT,
        }
        assert result.conflicting_ids == [existing.id]

    @pytest.mark.asyncio
    async def test_clinics_are_isolated(self, engine):
        appointment = await engine.appointments.book(CLINIC, booking())
        with pytest.raises(NotFoundError):
            engine.store.get(OTHER_CLINIC, appointment.id)

        other = await engine.appointments.book(OTHER_CLINIC, booking(provider_id="dr-x"))
        assert other.start == appointment.start


class TestConcurrentBooking:
    """Tests for racing bookings against the commit gate."""

    @pytest.mark.asyncio
    async def test_concurrent_same_slot_only_one_wins(self, engine):
        results = await asyncio.gather(
            *(engine.appointments.book(CLINIC, booking(patient_id=f"p{i}")) for i in range(8)),
            return_exceptions=True,
        )
        booked = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(booked) == 1
        assert len(conflicts) == 7
        assert_no_double_booking(engine)

    @pytest.mark.asyncio
    async def test_concurrent_any_chair_bookings_respect_pool(self, engine):
        providers = ["dr-a", "dr-b", "dr-c", "dr-d", "dr-a", "dr-b"]
        requirement = (ResourceRequirement(ResourceKind.CHAIR),)
        results = await asyncio.gather(
            *(
                engine.appointments.book(CLINIC, booking(patient_id=f"p{i}", provider_id=p, requirements=requirement))
                for i, p in enumerate(providers)
            ),
            return_exceptions=True,
        )
        booked = [r for r in results if not isinstance(r, Exception)]
        # Four distinct providers, three chairs
        assert len(booked) == 3
        assert all(isinstance(r, ConflictError) for r in results if isinstance(r, Exception))

    @pytest.mark.asyncio
    async def test_seeded_random_sequences_never_double_book(self, engine):
        """Test random booking and cancellation sequences against the no-double-booking invariant."""
        for seed in range(5):
            rng = random.Random(seed)
            for _ in range(60):
                day = MONDAY + timedelta(days=rng.randrange(5))
                start = at(day, 9) + timedelta(minutes=15 * rng.randrange(32))
                request = booking(
                    patient_id=f"p{rng.randrange(12)}",
                    provider_id=rng.choice(["dr-a", "dr-b", "dr-c"]),
                    appointment_type_id=rng.choice(["exam", "buffered", "cleaning", "consult", "xray"]),
                    start=start,
                )
                try:
                    await engine.appointments.book(CLINIC, request)
                except SchedulingError:
                    pass

                active = engine.store.list_appointments(CLINIC)
                if active and rng.random() < 0.15:
                    victim = rng.choice(active)
                    await engine.appointments.transition(
                        CLINIC, victim.id, AppointmentStatus.CANCELLED, reason="Random cancellation"
                    )
            assert_no_double_booking(engine)
