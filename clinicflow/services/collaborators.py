"""Contracts for the external collaborators the scheduling core calls out to."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from clinicflow.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    """A state change worth telling the patient about."""

    clinic_id: str
    event: str
    patient_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationService(Protocol):
    """Interface to Patient-Communications.

    Delivery content and channels belong to that service; the scheduling
    core only says what happened.
    """

    async def send(self, notification: Notification) -> None:
        """Deliver a notification. May raise; callers never wait on the outcome."""
        ...


class LoggingNotificationService:
    """Notification service that only logs, for development."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            f"Notification {notification.event} for patient {notification.patient_id} "
            f"in clinic {notification.clinic_id}: {notification.payload}"
        )


class NotificationDispatcher:
    """Fire-and-forget delivery on the running event loop.

    Failures are logged and never reach the request that triggered them.
    """

    def __init__(self, service: NotificationService):
        self.service = service
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, notification: Notification) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self.service.send(notification)
        except Exception as e:
            logger.error(
                f"Notification {notification.event} failed for clinic {notification.clinic_id}: {e}", exc_info=True
            )


@dataclass(frozen=True)
class AuditEntry:
    clinic_id: str
    entity: str
    entity_id: str
    action: str
    actor: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = field(default_factory=dict)


class AuditLog(Protocol):
    """Append-only audit trail."""

    def record(self, entry: AuditEntry) -> None:
        """Append an entry."""
        ...

    def entries(self, clinic_id: str, entity_id: str | None = None) -> list[AuditEntry]:
        """Entries of one clinic, optionally for a single entity."""
        ...


class InMemoryAuditLog:
    """In-memory audit log."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    def entries(self, clinic_id: str, entity_id: str | None = None) -> list[AuditEntry]:
        return [
            entry
            for entry in self._entries
            if entry.clinic_id == clinic_id and (entity_id is None or entry.entity_id == entity_id)
        ]
