"""
Domain models for event scheduling.

Lightweight dataclasses shared by repositories, services and the API layer.
Events themselves are owned by the wider membership application; only the
fields scheduling needs are modelled here.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum

from app.features.events.domain.recurrence import RecurrenceRule, decode

PUBLISHED = "published"


class RsvpStatus(str, Enum):
    ATTENDING = "attending"
    MAYBE = "maybe"
    DECLINED = "declined"


REMINDER_STATUSES = (RsvpStatus.ATTENDING, RsvpStatus.MAYBE)


class TemplateKind(str, Enum):
    DAY_BEFORE = "event_reminder_day_before"
    DAY_OF = "event_reminder_day_of"


class ReminderStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(slots=True)
class Event:
    """Represents an events row."""

    id: str
    title: str
    status: str
    start_date: date
    start_time: time | None = None
    location: str | None = None
    max_attendees: int | None = None
    rsvp_deadline: datetime | None = None
    rrule: str | None = None
    recurrence_end_date: date | None = None

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrule)

    @property
    def is_published(self) -> bool:
        return self.status == PUBLISHED

    def recurrence_rule(self) -> RecurrenceRule | None:
        """Decode the stored rule; the event's start date anchors rules without DTSTART."""
        if not self.rrule:
            return None
        return decode(self.rrule, anchor_date=self.start_date)


@dataclass(slots=True)
class InstanceOverride:
    """Represents an event_instance_overrides row."""

    event_id: str
    occurrence_date: date
    is_cancelled: bool


@dataclass(slots=True)
class AttendanceRecord:
    """Represents an event_rsvps row."""

    event_id: str
    occurrence_date: date
    participant_id: str
    status: RsvpStatus
    guest_count: int = 0
    notes: str | None = None
    updated_at: datetime | None = None
    participant_name: str | None = None
    participant_address: str | None = None

    @property
    def headcount(self) -> int:
        """People this record brings to the occurrence."""
        if self.status != RsvpStatus.ATTENDING:
            return 0
        return 1 + self.guest_count


@dataclass(slots=True)
class GuestRsvp:
    """Represents an event_guest_rsvps row."""

    id: str
    event_id: str
    occurrence_date: date
    name: str
    address: str
    status: RsvpStatus = RsvpStatus.ATTENDING

    @property
    def first_name(self) -> str:
        parts = self.name.strip().split()
        return parts[0] if parts else ""


@dataclass(slots=True)
class OccurrenceRoster:
    """Every RSVP recorded against one occurrence, cancelled or not."""

    event_id: str
    occurrence_date: date
    is_cancelled: bool
    records: list[AttendanceRecord] = field(default_factory=list)
    guests: list[GuestRsvp] = field(default_factory=list)

    def totals(self) -> dict[str, int]:
        """People per status. Attending and maybe members count with the guests they bring."""
        totals = {status.value: 0 for status in RsvpStatus}
        for record in self.records:
            people = 1 if record.status == RsvpStatus.DECLINED else 1 + record.guest_count
            totals[record.status.value] += people
        for guest in self.guests:
            totals[guest.status.value] += 1
        return totals


@dataclass(slots=True)
class Recipient:
    """Someone a reminder is addressed to."""

    address: str
    first_name: str
    kind: str  # "member" or "guest"
    participant_id: str | None = None


@dataclass(slots=True)
class ReminderLogEntry:
    """Represents a reminder_logs row."""

    template_kind: TemplateKind
    recipient_address: str
    related_key: str
    status: ReminderStatus
    sent_at: datetime
    error_message: str | None = None


@dataclass(slots=True)
class EventInstance:
    """One concrete, non-cancelled occurrence of an event."""

    event: Event
    occurrence_date: date

    @property
    def related_key(self) -> str:
        return related_key(self.event, self.occurrence_date)


def related_key(event: Event, occurrence_date: date) -> str:
    """Idempotence key for reminders: the event id, plus the date for recurring events."""
    if event.is_recurring:
        return f"{event.id}:{occurrence_date.isoformat()}"
    return event.id


def capacity_allows(
    max_attendees: int | None, current_headcount: int, prior_headcount: int, requested: int
) -> bool:
    """Whether ``requested`` more people fit once the participant's prior headcount is released."""
    if not max_attendees:
        return True
    return current_headcount - prior_headcount + requested <= max_attendees
