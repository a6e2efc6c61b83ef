"""
Call contracts for the persistence, calendar and email collaborators.

Storage and delivery live outside this package; the orchestrator only depends
on these protocols. ``registrar.database.EventDatabase`` is the bundled
EventStore.
"""

from typing import Protocol, runtime_checkable

from registrar.models import (
    CalendarResult,
    Event,
    EventStatus,
    FamilyMember,
    RegistrationAttempt,
    RegistrationRecord,
    RegistrationResult,
)


@runtime_checkable
class EventStore(Protocol):
    """
    Persistence used by the orchestrator.

    ``update_event_status`` raises EventNotFoundError for an unknown id.
    """

    async def init_db(self) -> None:
        ...

    async def get_event(self, event_id: str) -> Event | None:
        ...

    async def get_events_by_status(self, status: EventStatus) -> list[Event]:
        ...

    async def update_event_status(self, event_id: str, status: EventStatus) -> None:
        ...

    async def save_registration_attempt(self, record: RegistrationRecord) -> None:
        ...

    async def save_attempt_log(self, attempts: list[RegistrationAttempt]) -> None:
        ...

    async def get_family_members(self, active_only: bool = True) -> list[FamilyMember]:
        ...


@runtime_checkable
class CalendarService(Protocol):
    async def create_event_for_registration(
        self,
        event: Event,
        result: RegistrationResult,
    ) -> CalendarResult:
        ...


@runtime_checkable
class EmailSender(Protocol):
    async def send_email(self, recipients: list[str], subject: str, body: str) -> None:
        ...
