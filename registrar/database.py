import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from registrar.models import (
    Event,
    EventStatus,
    FamilyMember,
    RegistrationAttempt,
    RegistrationRecord,
)

logger = logging.getLogger(__name__)


class EventNotFoundError(LookupError):
    """Raised when an event id does not exist in storage."""

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class EventDatabase:
    """
    SQLite persistence for events, family members and registration records.

    Costs are stored as text exactly as received so the payment guard sees the
    original value, not a float approximation.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    async def init_db(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    cost TEXT,
                    registration_url TEXT,
                    status TEXT NOT NULL,
                    date TEXT,
                    location_address TEXT,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS family_members (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    birthdate TEXT,
                    active INTEGER DEFAULT 1
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS registrations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    approval_id TEXT,
                    channel TEXT,
                    success INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    reason TEXT,
                    error_message TEXT,
                    confirmation_number TEXT,
                    adapter_used TEXT,
                    attempts INTEGER DEFAULT 0,
                    final_error_type TEXT,
                    calendar_event_created INTEGER DEFAULT 0,
                    calendar_event_id TEXT,
                    calendar_event_link TEXT,
                    requires_manual_completion INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS registration_attempts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    attempt INTEGER NOT NULL,
                    error_type TEXT,
                    error_message TEXT,
                    elapsed_seconds REAL,
                    retryable INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            await db.commit()

    async def create_event(self, event: Event):
        now = datetime.now().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO events (id, title, cost, registration_url, status, date,
                    location_address, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.title,
                    str(event.cost) if event.cost is not None else None,
                    event.registration_url,
                    event.status.value,
                    event.date.isoformat() if event.date else None,
                    event.location_address,
                    event.description,
                    now,
                    now,
                )
            )
            await db.commit()

    async def get_event(self, event_id: str) -> Event | None:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM events WHERE id = ?", (event_id,)) as cursor:
                row = await cursor.fetchone()
                if not row:
                    return None
                return _row_to_event(row)

    async def get_events_by_status(self, status: EventStatus) -> list[Event]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM events WHERE status = ? ORDER BY created_at, rowid", (status.value,)
            ) as cursor:
                rows = await cursor.fetchall()
                return [_row_to_event(row) for row in rows]

    async def update_event_status(self, event_id: str, status: EventStatus):
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE events SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, datetime.now().isoformat(), event_id)
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise EventNotFoundError(event_id)
        logger.debug(f"Updated event {event_id} status to '{status.value}'")

    async def update_event_cost(self, event_id: str, cost):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE events SET cost = ?, updated_at = ? WHERE id = ?",
                (str(cost) if cost is not None else None, datetime.now().isoformat(), event_id)
            )
            await db.commit()

    async def save_registration_attempt(self, record: RegistrationRecord):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO registrations (event_id, approval_id, channel, success, status, reason,
                    error_message, confirmation_number, adapter_used, attempts, final_error_type,
                    calendar_event_created, calendar_event_id, calendar_event_link,
                    requires_manual_completion, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.event_id,
                    record.approval_id,
                    record.channel,
                    int(record.success),
                    record.status.value,
                    record.reason.value if record.reason else None,
                    record.error_message,
                    record.confirmation_number,
                    record.adapter_used,
                    record.attempts,
                    record.final_error_type,
                    int(record.calendar_event_created),
                    record.calendar_event_id,
                    record.calendar_event_link,
                    int(record.requires_manual_completion),
                    record.created_at.isoformat(),
                )
            )
            await db.commit()

    async def save_attempt_log(self, attempts: list[RegistrationAttempt]):
        if not attempts:
            return
        now = datetime.now().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """
                INSERT INTO registration_attempts (event_id, attempt, error_type, error_message,
                    elapsed_seconds, retryable, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (a.event_id, a.attempt, a.error_type, a.error_message,
                     a.elapsed_seconds, int(a.retryable), now)
                    for a in attempts
                ]
            )
            await db.commit()

    async def get_registrations(self, event_id: str) -> list[RegistrationRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM registrations WHERE event_id = ? ORDER BY id", (event_id,)
            ) as cursor:
                rows = await cursor.fetchall()
                return [_row_to_registration(row) for row in rows]

    async def get_attempt_log(self, event_id: str) -> list[RegistrationAttempt]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM registration_attempts WHERE event_id = ? ORDER BY id", (event_id,)
            ) as cursor:
                rows = await cursor.fetchall()
                return [
                    RegistrationAttempt(
                        event_id=row["event_id"],
                        attempt=row["attempt"],
                        error_type=row["error_type"],
                        error_message=row["error_message"],
                        elapsed_seconds=row["elapsed_seconds"] or 0.0,
                        retryable=bool(row["retryable"]),
                    )
                    for row in rows
                ]

    async def add_family_member(self, member: FamilyMember):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO family_members (name, role, birthdate, active) VALUES (?, ?, ?, ?)",
                (
                    member.name,
                    member.role,
                    member.birthdate.isoformat() if member.birthdate else None,
                    int(member.active),
                )
            )
            await db.commit()

    async def get_family_members(self, active_only: bool = True) -> list[FamilyMember]:
        query = "SELECT * FROM family_members"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY id"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query) as cursor:
                rows = await cursor.fetchall()
                return [
                    FamilyMember(
                        name=row["name"],
                        role=row["role"],
                        birthdate=datetime.fromisoformat(row["birthdate"]) if row["birthdate"] else None,
                        active=bool(row["active"]),
                    )
                    for row in rows
                ]


def _row_to_event(row) -> Event:
    """Convert a database row to an Event object."""
    return Event(
        id=row["id"],
        title=row["title"],
        cost=row["cost"],
        registration_url=row["registration_url"],
        status=EventStatus(row["status"]),
        date=datetime.fromisoformat(row["date"]) if row["date"] else None,
        location_address=row["location_address"],
        description=row["description"],
    )


def _row_to_registration(row) -> RegistrationRecord:
    return RegistrationRecord(
        event_id=row["event_id"],
        approval_id=row["approval_id"],
        channel=row["channel"],
        success=bool(row["success"]),
        status=EventStatus(row["status"]),
        reason=row["reason"],
        error_message=row["error_message"],
        confirmation_number=row["confirmation_number"],
        adapter_used=row["adapter_used"],
        attempts=row["attempts"] or 0,
        final_error_type=row["final_error_type"],
        calendar_event_created=bool(row["calendar_event_created"]),
        calendar_event_id=row["calendar_event_id"],
        calendar_event_link=row["calendar_event_link"],
        requires_manual_completion=bool(row["requires_manual_completion"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
