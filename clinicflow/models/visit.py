"""Visit and patient flow data models."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum


class FlowState(StrEnum):
    """Physical progress of a patient through the clinic."""

    ARRIVED = "arrived"
    WAITING = "waiting"
    CALLED = "called"
    SEATED = "seated"
    IN_TREATMENT = "in_treatment"
    CHECKOUT = "checkout"
    DEPARTED = "departed"
    LEFT_WITHOUT_BEING_SEEN = "left_without_being_seen"

    @property
    def is_terminal(self) -> bool:
        return not FLOW_TRANSITIONS[self]


FLOW_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.ARRIVED: frozenset({FlowState.WAITING, FlowState.CALLED}),
    FlowState.WAITING: frozenset({FlowState.CALLED, FlowState.LEFT_WITHOUT_BEING_SEEN}),
    FlowState.CALLED: frozenset({FlowState.SEATED, FlowState.LEFT_WITHOUT_BEING_SEEN}),
    FlowState.SEATED: frozenset({FlowState.IN_TREATMENT}),
    FlowState.IN_TREATMENT: frozenset({FlowState.CHECKOUT}),
    FlowState.CHECKOUT: frozenset({FlowState.DEPARTED}),
    FlowState.DEPARTED: frozenset(),
    FlowState.LEFT_WITHOUT_BEING_SEEN: frozenset(),
}


@dataclass(frozen=True)
class FlowTransition:
    state: FlowState
    at: datetime
    actor: str = "system"
    note: str | None = None


@dataclass(frozen=True)
class QueueTicket:
    """Position marker in a location's daily queue."""

    number: int
    issued_at: datetime


@dataclass
class Visit:
    """One physical attendance of a patient at the clinic."""

    id: str
    clinic_id: str
    location_id: str
    patient_id: str
    arrived_at: datetime
    ticket: QueueTicket
    appointment_id: str | None = None
    emergency: bool = False
    history: list[FlowTransition] = field(default_factory=list)

    @property
    def state(self) -> FlowState:
        return self.history[-1].state

    @property
    def state_since(self) -> datetime:
        return self.history[-1].at

    def time_in_state(self, now: datetime) -> timedelta:
        return now - self.state_since

    def entered(self, state: FlowState) -> datetime | None:
        """When the visit last entered ``state``, if ever."""
        for transition in reversed(self.history):
            if transition.state == state:
                return transition.at
        return None
