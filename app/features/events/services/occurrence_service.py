"""
Occurrence expansion composed with per-occurrence overrides.

The enumerator knows nothing about cancellations; everything here expands
first and then drops cancelled dates.
"""

from collections.abc import Iterable
from datetime import date

from app.config import settings
from app.features.events.domain import (
    Event,
    EventInstance,
    EventNotFound,
    ExpansionFailure,
    MalformedRule,
    OccurrenceNotFound,
    RecurrenceRule,
    RecurrenceRuleLocked,
    ReminderLogEntry,
    effective_end_date,
    encode,
    is_occurrence,
    occurrences,
    related_key,
    shift_capped,
    split_series,
)
from app.features.events.repository.event_repository import event_repository
from app.features.events.repository.override_repository import override_repository
from app.features.events.repository.reminder_log_repository import reminder_log_repository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def is_scheduled_on(event: Event, day: date) -> bool:
    """
    Whether ``day`` is one of the event's occurrences (ignoring cancellations).

    Raises:
        ExpansionFailure: the stored rule no longer decodes
    """
    if not event.is_recurring:
        return day == event.start_date
    return is_occurrence(_rule_for(event), day)


def _rule_for(event: Event) -> RecurrenceRule:
    try:
        return event.recurrence_rule()
    except MalformedRule as e:
        raise ExpansionFailure(f"Stored rule does not decode: {e}", event_id=event.id) from e


def expand_event(event: Event, range_start: date, range_end: date) -> list[date]:
    """
    Raw occurrence dates of an event in [range_start, range_end).

    A non-recurring event has exactly one occurrence, its start date.

    Raises:
        ExpansionFailure: the stored rule no longer decodes
    """
    if not event.is_recurring:
        return [event.start_date] if range_start <= event.start_date < range_end else []
    return list(occurrences(_rule_for(event), range_start, range_end))


def filter_cancelled(dates: Iterable[date], cancelled: set[date]) -> list[date]:
    return [day for day in dates if day not in cancelled]


class OccurrenceService:
    """Instance listing, single-occurrence cancellation and rule revisions."""

    def __init__(
        self,
        events=event_repository,
        overrides=override_repository,
        reminder_log=reminder_log_repository,
        horizon_days: int | None = None,
    ):
        self.events = events
        self.overrides = overrides
        self.reminder_log = reminder_log
        self.horizon_days = horizon_days or settings.RECURRENCE_HORIZON_DAYS

    async def _require_event(self, event_id: str) -> Event:
        event = await self.events.get_event(event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found", event_id=event_id)
        return event

    async def active_occurrences(self, event: Event, range_start: date, range_end: date) -> list[date]:
        """Occurrences in [range_start, range_end) that have not been cancelled."""
        dates = expand_event(event, range_start, range_end)
        if not dates:
            return []
        cancelled = await self.overrides.cancelled_dates(event.id, range_start, range_end)
        return filter_cancelled(dates, cancelled)

    async def list_instances(
        self, event_id: str, range_start: date, range_end: date
    ) -> list[EventInstance]:
        """
        Expanded, non-cancelled instances of an event.

        The window is clamped to the configured horizon so open-ended series
        cannot be expanded without limit.
        """
        event = await self._require_event(event_id)
        if range_end <= range_start:
            return []

        range_end = min(range_end, shift_capped(range_start, self.horizon_days))
        dates = await self.active_occurrences(event, range_start, range_end)
        return [EventInstance(event=event, occurrence_date=day) for day in dates]

    async def _require_occurrence(self, event_id: str, occurrence_date: date) -> Event:
        event = await self._require_event(event_id)
        if not is_scheduled_on(event, occurrence_date):
            raise OccurrenceNotFound(
                f"{occurrence_date.isoformat()} is not an occurrence of event {event_id}",
                event_id=event_id,
                occurrence_date=occurrence_date,
            )
        return event

    async def cancel_occurrence(self, event_id: str, occurrence_date: date) -> None:
        await self._require_occurrence(event_id, occurrence_date)
        await self.overrides.cancel(event_id, occurrence_date)

    async def uncancel_occurrence(self, event_id: str, occurrence_date: date) -> None:
        await self._require_occurrence(event_id, occurrence_date)
        await self.overrides.uncancel(event_id, occurrence_date)

    async def reminder_history(
        self, event_id: str, occurrence_date: date
    ) -> tuple[str, list[ReminderLogEntry]]:
        """Related key of the occurrence and every reminder attempt logged under it."""
        event = await self._require_occurrence(event_id, occurrence_date)
        key = related_key(event, occurrence_date)
        return key, await self.reminder_log.list_entries(key)

    async def revise_rule(self, event_id: str, rule: RecurrenceRule) -> RecurrenceRule:
        """
        Replace an event's rule in place.

        Raises:
            RecurrenceRuleLocked: reminders were already sent against the
                current rule; use ``start_rule_version`` instead
        """
        await self._require_event(event_id)
        if await self.reminder_log.has_sent_for_event(event_id):
            raise RecurrenceRuleLocked(event_id)

        await self.events.update_recurrence(
            event_id, encode(rule), effective_end_date(rule, self.horizon_days)
        )
        return rule

    async def start_rule_version(
        self, event_id: str, split_date: date
    ) -> tuple[RecurrenceRule, RecurrenceRule | None]:
        """
        End the event's current series before ``split_date``.

        The event keeps the head of the series, so occurrences that were
        already reminded about stay untouched. The tail (None when nothing
        remains) is returned for the caller to attach to a new event.
        """
        event = await self._require_event(event_id)
        if not event.is_recurring:
            raise OccurrenceNotFound(f"Event {event_id} is not recurring", event_id=event_id)

        head, tail = split_series(_rule_for(event), split_date)
        await self.events.update_recurrence(
            event_id, encode(head), effective_end_date(head, self.horizon_days)
        )
        logger.info(
            "Recurring series split",
            event_id=event_id,
            split_date=split_date.isoformat(),
            has_tail=tail is not None,
        )
        return head, tail


occurrence_service = OccurrenceService()
