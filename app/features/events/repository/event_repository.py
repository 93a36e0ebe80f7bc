"""
Read access to events owned by the membership application.

Scheduling never creates or publishes events; it only reads them and keeps
the stored recurrence rule and its derived end date current.
"""

from datetime import date

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from app.features.events.domain import Event
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EventRepositoryError(DatabaseError):
    """More specific exception for event repository failures."""


class EventRepository:
    """Queries over the events table."""

    SELECT_COLUMNS = """
        id, title, status, start_date, start_time, location,
        max_attendees, rsvp_deadline, rrule, recurrence_end_date
    """

    @staticmethod
    def _row_to_event(row: dict | None) -> Event | None:
        if not row:
            return None

        return Event(
            id=str(row["id"]),
            title=row["title"],
            status=row["status"],
            start_date=row["start_date"],
            start_time=row.get("start_time"),
            location=row.get("location"),
            max_attendees=row.get("max_attendees"),
            rsvp_deadline=row.get("rsvp_deadline"),
            rrule=row.get("rrule"),
            recurrence_end_date=row.get("recurrence_end_date"),
        )

    async def get_event(self, event_id: str) -> Event | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM events WHERE id = %s"
        row = await fetch_one(query, (event_id,))
        return self._row_to_event(row)

    async def list_single_events_on(self, dates: list[date]) -> list[Event]:
        """Published, non-recurring events whose start date is one of ``dates``."""
        if not dates:
            return []

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM events
            WHERE status = 'published'
              AND (rrule IS NULL OR rrule = '')
              AND start_date = ANY(%s)
            ORDER BY start_date, start_time NULLS FIRST
        """
        rows = await fetch_all(query, (list(dates),))
        return [self._row_to_event(row) for row in rows]

    async def list_recurring_candidates(self, range_start: date, range_end: date) -> list[Event]:
        """
        Published recurring events that may recur within [range_start, range_end].

        Series whose stored end date precedes the range, or that start after
        it, are excluded without decoding their rules.
        """
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM events
            WHERE status = 'published'
              AND rrule IS NOT NULL
              AND rrule <> ''
              AND (recurrence_end_date IS NULL OR recurrence_end_date >= %s)
              AND start_date <= %s
            ORDER BY start_date
        """
        rows = await fetch_all(query, (range_start, range_end))
        return [self._row_to_event(row) for row in rows]

    async def update_recurrence(
        self, event_id: str, rrule: str | None, recurrence_end_date: date | None
    ) -> None:
        query = """
            UPDATE events
            SET rrule = %s,
                recurrence_end_date = %s,
                updated_at = NOW()
            WHERE id = %s
        """
        affected = await execute_query(query, (rrule, recurrence_end_date, event_id))
        if affected == 0:
            raise EventRepositoryError(
                f"Event {event_id} not found", operation="update_recurrence", recoverable=False
            )

        logger.info(
            "Event recurrence updated",
            event_id=event_id,
            rrule=rrule,
            recurrence_end_date=recurrence_end_date.isoformat() if recurrence_end_date else None,
        )


event_repository = EventRepository()
