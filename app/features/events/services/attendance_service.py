"""
Attendance ledger: RSVP writes per event occurrence.

Every write is validated against the event (published, real occurrence, RSVP
deadline, not cancelled) before the repository applies the capacity check
and the write in one transaction. Rejections are expected outcomes and are
logged at info.
"""

from datetime import UTC, date, datetime

from app.features.events.domain import (
    AttendanceRecord,
    AttendanceRejected,
    DeadlinePassed,
    Event,
    EventNotFound,
    EventNotOpen,
    GuestRsvp,
    OccurrenceCancelled,
    OccurrenceNotFound,
    OccurrenceRoster,
    Recipient,
    RsvpStatus,
)
from app.features.events.repository.attendance_repository import attendance_repository
from app.features.events.repository.event_repository import event_repository
from app.features.events.repository.override_repository import override_repository
from app.features.events.services.occurrence_service import is_scheduled_on
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AttendanceLedger:
    """Per (event, occurrence date, participant) RSVP state."""

    def __init__(
        self,
        events=event_repository,
        overrides=override_repository,
        records=attendance_repository,
    ):
        self.events = events
        self.overrides = overrides
        self.records = records

    async def _validate_write(
        self, event_id: str, occurrence_date: date, now: datetime | None
    ) -> Event:
        event = await self.events.get_event(event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found", event_id=event_id)
        if not event.is_published:
            raise EventNotOpen(
                "This event is not open for RSVPs", event_id=event_id, occurrence_date=occurrence_date
            )
        if not is_scheduled_on(event, occurrence_date):
            raise OccurrenceNotFound(
                f"{occurrence_date.isoformat()} is not an occurrence of this event",
                event_id=event_id,
                occurrence_date=occurrence_date,
            )

        now = _as_utc(now or datetime.now(UTC))
        if event.rsvp_deadline and now > _as_utc(event.rsvp_deadline):
            raise DeadlinePassed(
                "The RSVP deadline for this event has passed",
                event_id=event_id,
                occurrence_date=occurrence_date,
            )

        if await self.overrides.is_cancelled(event_id, occurrence_date):
            raise OccurrenceCancelled(
                "This occurrence has been cancelled",
                event_id=event_id,
                occurrence_date=occurrence_date,
            )

        return event

    async def upsert(
        self,
        event_id: str,
        occurrence_date: date,
        participant_id: str,
        status: RsvpStatus | str,
        guest_count: int = 0,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> AttendanceRecord:
        """
        Record or replace a member's RSVP for one occurrence.

        Raises:
            ValueError: negative guest count or unknown status
            AttendanceRejected: one of its subclasses when the write is refused
        """
        status = RsvpStatus(status)
        if guest_count < 0:
            raise ValueError("guest_count must not be negative")

        record = AttendanceRecord(
            event_id=event_id,
            occurrence_date=occurrence_date,
            participant_id=participant_id,
            status=status,
            guest_count=guest_count,
            notes=notes,
        )

        try:
            event = await self._validate_write(event_id, occurrence_date, now)
            return await self.records.upsert(record, event.max_attendees)
        except AttendanceRejected as e:
            logger.info(
                "RSVP rejected",
                event_id=event_id,
                occurrence_date=occurrence_date.isoformat(),
                participant_id=participant_id,
                reason=e.code,
            )
            raise

    async def remove(self, event_id: str, occurrence_date: date, participant_id: str) -> bool:
        """Withdraw a member's RSVP. Returns False when there was none."""
        removed = await self.records.remove(event_id, occurrence_date, participant_id)
        logger.info(
            "RSVP withdrawn",
            event_id=event_id,
            occurrence_date=occurrence_date.isoformat(),
            participant_id=participant_id,
            removed=removed,
        )
        return removed

    async def register_guest(
        self,
        event_id: str,
        occurrence_date: date,
        name: str,
        address: str,
        now: datetime | None = None,
    ) -> GuestRsvp:
        """
        Register a non-member as attending. Guests count one toward capacity.

        Raises:
            ValueError: missing name or address
            AttendanceRejected: one of its subclasses when the write is refused
        """
        name = (name or "").strip()
        address = (address or "").strip().lower()
        if not name or not address:
            raise ValueError("Guest name and email are required")

        try:
            event = await self._validate_write(event_id, occurrence_date, now)
            return await self.records.insert_guest(
                event_id, occurrence_date, name, address, event.max_attendees
            )
        except AttendanceRejected as e:
            logger.info(
                "Guest RSVP rejected",
                event_id=event_id,
                occurrence_date=occurrence_date.isoformat(),
                reason=e.code,
            )
            raise

    async def count_by_status(
        self, event_id: str, occurrence_date: date, status: RsvpStatus | str
    ) -> int:
        return await self.records.count_by_status(event_id, occurrence_date, RsvpStatus(status))

    async def headcount(self, event_id: str, occurrence_date: date) -> int:
        return await self.records.headcount(event_id, occurrence_date)

    async def recipients(self, event_id: str, occurrence_date: date) -> list[Recipient]:
        return await self.records.recipients(event_id, occurrence_date)

    async def list_records(self, event_id: str, occurrence_date: date) -> OccurrenceRoster:
        """
        Every RSVP held for one occurrence. Cancelled occurrences keep their
        records and are listed like any other.

        Raises:
            EventNotFound: unknown event
            OccurrenceNotFound: the date is not one of the event's occurrences
        """
        event = await self.events.get_event(event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found", event_id=event_id)
        if not is_scheduled_on(event, occurrence_date):
            raise OccurrenceNotFound(
                f"{occurrence_date.isoformat()} is not an occurrence of this event",
                event_id=event_id,
                occurrence_date=occurrence_date,
            )

        records, guests = await self.records.list_records(event_id, occurrence_date)
        return OccurrenceRoster(
            event_id=event_id,
            occurrence_date=occurrence_date,
            is_cancelled=await self.overrides.is_cancelled(event_id, occurrence_date),
            records=records,
            guests=guests,
        )


attendance_ledger = AttendanceLedger()
