"""
Persistence for member and guest RSVPs, per event occurrence.

Capacity-checked writes run under a transaction-scoped advisory lock keyed by
the occurrence, so the headcount read and the write see one consistent
snapshot even under concurrent submissions.
"""

from datetime import date

import psycopg

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val, with_db_retry
from app.db.pool import get_db_transaction
from app.features.events.domain import (
    REMINDER_STATUSES,
    AttendanceRecord,
    CapacityExceeded,
    GuestAlreadyRegistered,
    GuestRsvp,
    Recipient,
    RsvpStatus,
)
from app.features.events.domain.models import capacity_allows
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ADVISORY_LOCK_QUERY = "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))"


def _lock_key(event_id: str, occurrence_date: date) -> str:
    return f"event_rsvp:{event_id}:{occurrence_date.isoformat()}"


class AttendanceRepository:
    """event_rsvps and event_guest_rsvps access."""

    RSVP_COLUMNS = "event_id, instance_date, member_id, status, guest_count, notes, updated_at"

    @staticmethod
    def _row_to_record(row: dict | None) -> AttendanceRecord | None:
        if not row:
            return None

        return AttendanceRecord(
            event_id=str(row["event_id"]),
            occurrence_date=row["instance_date"],
            participant_id=str(row["member_id"]),
            status=RsvpStatus(row["status"]),
            guest_count=row.get("guest_count") or 0,
            notes=row.get("notes"),
            updated_at=row.get("updated_at"),
            participant_name=row.get("first_name"),
            participant_address=row.get("email"),
        )

    async def get(
        self,
        event_id: str,
        occurrence_date: date,
        participant_id: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> AttendanceRecord | None:
        query = f"""
            SELECT {self.RSVP_COLUMNS}
            FROM event_rsvps
            WHERE event_id = %s AND instance_date = %s AND member_id = %s
        """
        row = await fetch_one(query, (event_id, occurrence_date, participant_id), connection=connection)
        return self._row_to_record(row)

    async def headcount(
        self,
        event_id: str,
        occurrence_date: date,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> int:
        """Attending members plus the guests they bring plus attending guest RSVPs."""
        query = """
            SELECT
                COALESCE((
                    SELECT SUM(1 + guest_count)
                    FROM event_rsvps
                    WHERE event_id = %s AND instance_date = %s AND status = 'attending'
                ), 0)
                + COALESCE((
                    SELECT COUNT(*)
                    FROM event_guest_rsvps
                    WHERE event_id = %s AND instance_date = %s AND status = 'attending'
                ), 0) AS headcount
        """
        params = (event_id, occurrence_date, event_id, occurrence_date)
        value = await fetch_val(query, params, connection=connection)
        return int(value or 0)

    async def count_by_status(self, event_id: str, occurrence_date: date, status: RsvpStatus) -> int:
        query = """
            SELECT COUNT(*)
            FROM event_rsvps
            WHERE event_id = %s AND instance_date = %s AND status = %s
        """
        value = await fetch_val(query, (event_id, occurrence_date, RsvpStatus(status).value))
        return int(value or 0)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def upsert(self, record: AttendanceRecord, max_attendees: int | None) -> AttendanceRecord:
        """
        Insert or replace a member RSVP, enforcing capacity atomically.

        Raises:
            CapacityExceeded: the occurrence cannot take this many more people
        """
        async with await get_db_transaction() as conn:
            await conn.execute(ADVISORY_LOCK_QUERY, (_lock_key(record.event_id, record.occurrence_date),))

            if record.status == RsvpStatus.ATTENDING and max_attendees:
                current = await self.headcount(
                    record.event_id, record.occurrence_date, connection=conn
                )
                prior = await self.get(
                    record.event_id, record.occurrence_date, record.participant_id, connection=conn
                )
                prior_headcount = prior.headcount if prior else 0

                if not capacity_allows(max_attendees, current, prior_headcount, record.headcount):
                    raise CapacityExceeded(
                        "Not enough spots left for this RSVP",
                        event_id=record.event_id,
                        occurrence_date=record.occurrence_date,
                        max_attendees=max_attendees,
                        headcount=current,
                    )

            query = f"""
                INSERT INTO event_rsvps (
                    event_id, instance_date, member_id, status, guest_count, notes
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (event_id, instance_date, member_id)
                DO UPDATE SET
                    status = EXCLUDED.status,
                    guest_count = EXCLUDED.guest_count,
                    notes = EXCLUDED.notes,
                    updated_at = NOW()
                RETURNING {self.RSVP_COLUMNS}
            """
            row = await fetch_one(
                query,
                (
                    record.event_id,
                    record.occurrence_date,
                    record.participant_id,
                    record.status.value,
                    record.guest_count,
                    record.notes,
                ),
                connection=conn,
            )

        logger.info(
            "RSVP saved",
            event_id=record.event_id,
            occurrence_date=record.occurrence_date.isoformat(),
            participant_id=record.participant_id,
            status=record.status.value,
            guest_count=record.guest_count,
        )
        return self._row_to_record(row)

    async def remove(self, event_id: str, occurrence_date: date, participant_id: str) -> bool:
        query = """
            DELETE FROM event_rsvps
            WHERE event_id = %s AND instance_date = %s AND member_id = %s
        """
        affected = await execute_query(query, (event_id, occurrence_date, participant_id))
        return affected > 0

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def insert_guest(
        self,
        event_id: str,
        occurrence_date: date,
        name: str,
        address: str,
        max_attendees: int | None,
    ) -> GuestRsvp:
        """
        Register an attending guest; one registration per address per occurrence.

        Raises:
            GuestAlreadyRegistered: the address already has an RSVP here
            CapacityExceeded: the occurrence is full
        """
        async with await get_db_transaction() as conn:
            await conn.execute(ADVISORY_LOCK_QUERY, (_lock_key(event_id, occurrence_date),))

            existing = await fetch_val(
                """
                SELECT id FROM event_guest_rsvps
                WHERE event_id = %s AND instance_date = %s AND email = %s
                """,
                (event_id, occurrence_date, address),
                connection=conn,
            )
            if existing:
                raise GuestAlreadyRegistered(
                    "This email is already registered for the event",
                    event_id=event_id,
                    occurrence_date=occurrence_date,
                )

            if max_attendees:
                current = await self.headcount(event_id, occurrence_date, connection=conn)
                if not capacity_allows(max_attendees, current, 0, 1):
                    raise CapacityExceeded(
                        "This event is full",
                        event_id=event_id,
                        occurrence_date=occurrence_date,
                        max_attendees=max_attendees,
                        headcount=current,
                    )

            row = await fetch_one(
                """
                INSERT INTO event_guest_rsvps (event_id, instance_date, name, email, status)
                VALUES (%s, %s, %s, %s, 'attending')
                ON CONFLICT (event_id, instance_date, email) DO NOTHING
                RETURNING id
                """,
                (event_id, occurrence_date, name, address),
                connection=conn,
            )
            if not row:
                raise GuestAlreadyRegistered(
                    "This email is already registered for the event",
                    event_id=event_id,
                    occurrence_date=occurrence_date,
                )

        logger.info(
            "Guest RSVP saved", event_id=event_id, occurrence_date=occurrence_date.isoformat()
        )
        return GuestRsvp(
            id=str(row["id"]),
            event_id=event_id,
            occurrence_date=occurrence_date,
            name=name,
            address=address,
        )

    async def list_records(
        self, event_id: str, occurrence_date: date
    ) -> tuple[list[AttendanceRecord], list[GuestRsvp]]:
        """Member RSVPs with member details, then guest RSVPs, newest first, in every status."""
        member_rows = await fetch_all(
            """
            SELECT r.event_id, r.instance_date, r.member_id, r.status, r.guest_count,
                   r.notes, r.updated_at, m.first_name, m.email
            FROM event_rsvps r
            LEFT JOIN members m ON m.id = r.member_id
            WHERE r.event_id = %s AND r.instance_date = %s
            ORDER BY r.created_at DESC
            """,
            (event_id, occurrence_date),
        )
        guest_rows = await fetch_all(
            """
            SELECT id, event_id, instance_date, name, email, status
            FROM event_guest_rsvps
            WHERE event_id = %s AND instance_date = %s
            ORDER BY created_at DESC
            """,
            (event_id, occurrence_date),
        )

        records = [self._row_to_record(row) for row in member_rows]
        guests = [
            GuestRsvp(
                id=str(row["id"]),
                event_id=str(row["event_id"]),
                occurrence_date=row["instance_date"],
                name=row["name"],
                address=row["email"],
                status=RsvpStatus(row["status"]),
            )
            for row in guest_rows
        ]
        return records, guests

    async def recipients(self, event_id: str, occurrence_date: date) -> list[Recipient]:
        """Members attending or maybe-attending, then attending guests. Rows without an address are dropped."""
        member_rows = await fetch_all(
            """
            SELECT m.id, m.email, m.first_name
            FROM event_rsvps r
            JOIN members m ON m.id = r.member_id
            WHERE r.event_id = %s
              AND r.instance_date = %s
              AND r.status = ANY(%s)
            ORDER BY r.updated_at
            """,
            (event_id, occurrence_date, [status.value for status in REMINDER_STATUSES]),
        )
        guest_rows = await fetch_all(
            """
            SELECT name, email
            FROM event_guest_rsvps
            WHERE event_id = %s
              AND instance_date = %s
              AND status = 'attending'
            ORDER BY created_at
            """,
            (event_id, occurrence_date),
        )

        recipients = [
            Recipient(
                address=row["email"],
                first_name=row.get("first_name") or "Member",
                kind="member",
                participant_id=str(row["id"]),
            )
            for row in member_rows
            if row.get("email")
        ]
        for row in guest_rows:
            if not row.get("email"):
                continue
            name_parts = (row.get("name") or "").strip().split()
            recipients.append(
                Recipient(
                    address=row["email"],
                    first_name=name_parts[0] if name_parts else "Guest",
                    kind="guest",
                )
            )
        return recipients


attendance_repository = AttendanceRepository()
