"""
Error taxonomy for event scheduling.

Rule errors are local and user-facing, attendance rejections are expected
outcomes of an RSVP write, delivery and expansion failures are isolated
inside the reminder dispatcher and only ever counted.
"""

from datetime import date


class MalformedRule(ValueError):
    """A recurrence rule string or rule value is invalid."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class RecurrenceRuleLocked(Exception):
    """In-place edit refused: reminders were already sent against the current rule."""

    def __init__(self, event_id: str):
        super().__init__(
            f"Event {event_id} has sent reminders; start a new rule version instead of editing"
        )
        self.event_id = event_id


class AttendanceRejected(Exception):
    """Base class for expected RSVP write rejections."""

    code = "rejected"
    http_status = 409

    def __init__(
        self,
        message: str,
        event_id: str | None = None,
        occurrence_date: date | None = None,
    ):
        super().__init__(message)
        self.event_id = event_id
        self.occurrence_date = occurrence_date


class EventNotFound(AttendanceRejected):
    code = "event_not_found"
    http_status = 404


class EventNotOpen(AttendanceRejected):
    code = "event_not_open"
    http_status = 400


class OccurrenceNotFound(AttendanceRejected):
    code = "occurrence_not_found"
    http_status = 404


class OccurrenceCancelled(AttendanceRejected):
    code = "occurrence_cancelled"


class DeadlinePassed(AttendanceRejected):
    code = "deadline_passed"
    http_status = 400


class CapacityExceeded(AttendanceRejected):
    code = "capacity_exceeded"

    def __init__(
        self,
        message: str,
        event_id: str | None = None,
        occurrence_date: date | None = None,
        max_attendees: int | None = None,
        headcount: int | None = None,
    ):
        super().__init__(message, event_id, occurrence_date)
        self.max_attendees = max_attendees
        self.headcount = headcount


class GuestAlreadyRegistered(AttendanceRejected):
    code = "guest_already_registered"


class DeliveryFailure(Exception):
    """A single reminder could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class ExpansionFailure(Exception):
    """One event's recurrence could not be expanded."""

    def __init__(self, message: str, event_id: str):
        super().__init__(message)
        self.event_id = event_id
