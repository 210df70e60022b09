"""Tests for visits, the daily queue and wait alerts."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import CLINIC, MONDAY, at, build_calendar

from clinicflow.errors import GuardViolationError, NotFoundError
from clinicflow.models.visit import FlowState
from clinicflow.services.engine import ClinicEngine

MORNING = at(MONDAY, 9)


def walk_in(engine, clock, patient_id, minutes_later=1, **kwargs):
    clock.advance(minutes=minutes_later)
    return engine.walk_in(CLINIC, "main", patient_id, **kwargs)


@pytest.fixture
def morning(clock):
    clock.now = MORNING
    return clock


class TestCheckIn:
    """Tests for opening visits."""

    def test_tickets_count_up_per_location(self, engine, morning):
        first = walk_in(engine, morning, "p1")
        second = walk_in(engine, morning, "p2")
        other_room = engine.walk_in(CLINIC, "radiology", "p3")
        assert (first.ticket.number, second.ticket.number) == (1, 2)
        assert other_room.ticket.number == 1
        assert first.state == FlowState.ARRIVED

    def test_tickets_restart_each_day(self, engine, morning):
        walk_in(engine, morning, "p1")
        morning.advance(days=1)
        assert walk_in(engine, morning, "p2").ticket.number == 1

    def test_ticket_day_follows_clinic_timezone(self, clock, config, notifications):
        """Test that evening arrivals in New York share a ticket day across UTC midnight."""
        calendar = build_calendar()
        calendar.register_clinic("ny", "America/New_York")
        engine = ClinicEngine(config=config, calendar=calendar, notification_service=notifications, clock=clock)

        clock.now = datetime(2030, 1, 7, 23, 30, tzinfo=UTC)
        assert engine.walk_in("ny", "main", "p1").ticket.number == 1
        clock.advance(hours=1)
        assert engine.walk_in("ny", "main", "p2").ticket.number == 2
        clock.advance(hours=5)
        assert engine.walk_in("ny", "main", "p3").ticket.number == 1

    def test_one_open_visit_per_patient(self, engine, morning):
        walk_in(engine, morning, "p1")
        with pytest.raises(GuardViolationError) as exc_info:
            walk_in(engine, morning, "p1")
        assert exc_info.value.code == "ALREADY_CHECKED_IN"

    def test_unknown_clinic(self, engine):
        with pytest.raises(NotFoundError):
            engine.walk_in("nowhere", "main", "p1")


class TestTransitions:
    """Tests for the visit state machine."""

    @pytest.mark.asyncio
    async def test_full_path_records_history(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        path = [
            FlowState.WAITING,
            FlowState.CALLED,
            FlowState.SEATED,
            FlowState.IN_TREATMENT,
            FlowState.CHECKOUT,
            FlowState.DEPARTED,
        ]
        for state in path:
            morning.advance(minutes=5)
            await engine.transition_visit(CLINIC, visit.id, state, note=f"to {state}")

        assert [t.state for t in visit.history] == [FlowState.ARRIVED, *path]
        assert visit.entered(FlowState.SEATED) == MORNING + timedelta(minutes=16)
        assert engine.flow.list_visits(CLINIC) == []
        assert engine.flow.list_visits(CLINIC, include_closed=True) == [visit]

    @pytest.mark.asyncio
    async def test_arrived_can_be_called_directly(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        await engine.transition_visit(CLINIC, visit.id, FlowState.CALLED)
        assert visit.state == FlowState.CALLED

    @pytest.mark.asyncio
    async def test_illegal_transition(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        with pytest.raises(GuardViolationError):
            await engine.transition_visit(CLINIC, visit.id, FlowState.IN_TREATMENT)
        assert visit.state == FlowState.ARRIVED
        assert len(visit.history) == 1

    @pytest.mark.asyncio
    async def test_closed_visit_allows_new_check_in(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        await engine.transition_visit(CLINIC, visit.id, FlowState.WAITING)
        await engine.transition_visit(CLINIC, visit.id, FlowState.LEFT_WITHOUT_BEING_SEEN)
        assert walk_in(engine, morning, "p1").id != visit.id

    def test_priority_on_closed_visit(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        engine.flow.close(CLINIC, visit.id, morning(), "Appointment cancelled")
        assert visit.state == FlowState.LEFT_WITHOUT_BEING_SEEN
        with pytest.raises(GuardViolationError):
            engine.flow.set_priority(CLINIC, visit.id, True, morning())


class TestQueue:
    """Tests for queue ordering, alerts and summaries."""

    @pytest.mark.asyncio
    async def test_called_then_emergency_then_arrival_order(self, engine, morning):
        early = walk_in(engine, morning, "p1")
        called = walk_in(engine, morning, "p2")
        late = walk_in(engine, morning, "p3")
        emergency = walk_in(engine, morning, "p4", emergency=True)
        for visit in (early, late, emergency):
            await engine.transition_visit(CLINIC, visit.id, FlowState.WAITING)
        await engine.transition_visit(CLINIC, called.id, FlowState.CALLED)

        queue = engine.flow.get_queue(CLINIC, "main")
        assert [v.id for v in queue] == [called.id, emergency.id, early.id, late.id]

    @pytest.mark.asyncio
    async def test_priority_change_reorders_without_rewriting_arrival(self, engine, morning):
        first = walk_in(engine, morning, "p1")
        second = walk_in(engine, morning, "p2")
        for visit in (first, second):
            await engine.transition_visit(CLINIC, visit.id, FlowState.WAITING)

        engine.flow.set_priority(CLINIC, second.id, True, morning())
        assert [v.id for v in engine.flow.get_queue(CLINIC, "main")] == [second.id, first.id]
        assert second.arrived_at == MORNING + timedelta(minutes=2)
        assert second.ticket.number == 2

    @pytest.mark.asyncio
    async def test_arrived_and_seated_not_in_queue(self, engine, morning):
        arrived = walk_in(engine, morning, "p1")
        seated = walk_in(engine, morning, "p2")
        await engine.transition_visit(CLINIC, seated.id, FlowState.CALLED)
        await engine.transition_visit(CLINIC, seated.id, FlowState.SEATED)
        queue_ids = [v.id for v in engine.flow.get_queue(CLINIC, "main")]
        assert arrived.id not in queue_ids
        assert seated.id not in queue_ids

    @pytest.mark.asyncio
    async def test_wait_alert_after_threshold(self, engine, morning):
        visit = walk_in(engine, morning, "p1")
        await engine.transition_visit(CLINIC, visit.id, FlowState.WAITING)

        morning.advance(minutes=15)
        assert engine.flow.wait_alerts(CLINIC, morning()) == []

        morning.advance(minutes=5)
        alerts = engine.flow.wait_alerts(CLINIC, morning(), "main")
        assert [(a.visit_id, a.state, a.minutes_in_state, a.threshold_minutes) for a in alerts] == [
            (visit.id, FlowState.WAITING, 20.0, 15)
        ]

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, engine, morning, config):
        config.wait_thresholds = {"arrived": 2}
        visit = walk_in(engine, morning, "p1")
        morning.advance(minutes=3)
        assert [a.visit_id for a in engine.flow.wait_alerts(CLINIC, morning())] == [visit.id]

    @pytest.mark.asyncio
    async def test_queue_summary(self, engine, morning):
        first = walk_in(engine, morning, "p1")
        second = walk_in(engine, morning, "p2")
        walk_in(engine, morning, "p3")
        await engine.transition_visit(CLINIC, first.id, FlowState.WAITING)
        morning.advance(minutes=10)
        await engine.transition_visit(CLINIC, second.id, FlowState.WAITING)
        morning.advance(minutes=10)

        summary = engine.flow.queue_summary(CLINIC, "main", morning())
        assert summary.counts == {"waiting": 2, "arrived": 1}
        assert summary.waiting == 2
        assert summary.longest_wait_minutes == 20.0
        assert summary.average_wait_minutes == 15.0

    def test_empty_summary(self, engine, morning):
        summary = engine.flow.queue_summary(CLINIC, "main", morning())
        assert summary.waiting == 0
        assert summary.longest_wait_minutes == 0.0
