"""
Reminder dispatcher: one pass per external trigger.

Expands every published event intersecting today and tomorrow (in the
organisation's time zone), drops cancelled occurrences and sends a day-before
or day-of reminder to each attendee. The send log makes every attempt
idempotent per (template, recipient, occurrence); only a ``sent`` row blocks
a later attempt.

Failures are isolated per event and per recipient and only ever counted:
``dispatch`` always returns a summary.
"""

import asyncio
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.events.domain import (
    DeliveryFailure,
    Event,
    ExpansionFailure,
    Recipient,
    TemplateKind,
    related_key,
)
from app.features.events.repository.attendance_repository import attendance_repository
from app.features.events.repository.event_repository import event_repository
from app.features.events.repository.override_repository import override_repository
from app.features.events.repository.reminder_log_repository import reminder_log_repository
from app.features.events.services.notification_client import (
    NotificationSender,
    build_notification_sender,
)
from app.features.events.services.occurrence_service import expand_event, filter_cancelled
from app.infrastructure.observability.logging import get_logger, log_context
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

LOCK_KEY_PREFIX = "event_reminders:run"


class ReminderStats:
    """Per-template counters."""

    def __init__(self):
        self.sent = 0
        self.failed = 0
        self.skipped = 0

    def to_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped}


class DispatchSummary:
    """Metrics for one dispatcher pass."""

    def __init__(self, today: date, tomorrow: date):
        self.start_time = datetime.now(UTC)
        self.today = today
        self.tomorrow = tomorrow
        self.locked = False
        self.stats = {kind: ReminderStats() for kind in TemplateKind}
        self.events_processed = 0
        self.occurrences_processed = 0
        self.expansion_failures = 0
        self.duplicate_deliveries = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_expansion_failure(self, event_id: str, error: str):
        self.expansion_failures += 1
        self.errors.append(
            {"event_id": event_id, "error": error, "error_type": "expansion"}
        )
        logger.warning("Event expansion failed", event_id=event_id, error=error)

    def record_processing_error(self, scope: str, error: str, **context):
        self.errors.append({"scope": scope, "error": error, "error_type": "processing", **context})
        logger.error("Reminder processing error", scope=scope, error=error, **context)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def totals(self) -> dict:
        return {
            "sent": sum(s.sent for s in self.stats.values()),
            "failed": sum(s.failed for s in self.stats.values()),
            "skipped": sum(s.skipped for s in self.stats.values()),
        }

    def to_dict(self) -> dict:
        return {
            "job_run": "event_reminders",
            "today": self.today.isoformat(),
            "tomorrow": self.tomorrow.isoformat(),
            "locked": self.locked,
            "results": {kind.value: stats.to_dict() for kind, stats in self.stats.items()},
            "totals": self.totals,
            "events_processed": self.events_processed,
            "occurrences_processed": self.occurrences_processed,
            "expansion_failures": self.expansion_failures,
            "duplicate_deliveries": self.duplicate_deliveries,
            "errors_count": len(self.errors),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
        }


def _format_event_date(day: date) -> str:
    return f"{day:%A}, {day:%B} {day.day}, {day.year}"


def _reminder_variables(event: Event, occurrence_date: date, recipient: Recipient) -> dict:
    event_time = "TBD"
    if event.start_time is not None:
        event_time = event.start_time.strftime("%I:%M %p").lstrip("0")
    return {
        "event_name": event.title,
        "event_date": _format_event_date(occurrence_date),
        "event_time": event_time,
        "event_location": event.location or "TBD",
        "name": recipient.first_name,
    }


class ReminderDispatcher:
    """Sends day-before and day-of reminders for today's and tomorrow's occurrences."""

    def __init__(
        self,
        sender: NotificationSender,
        events=event_repository,
        overrides=override_repository,
        attendance=attendance_repository,
        reminder_log=reminder_log_repository,
        lock=fast_redis,
        timezone: str | None = None,
        max_concurrent_events: int | None = None,
        lock_ttl_seconds: int | None = None,
    ):
        self.sender = sender
        self.events = events
        self.overrides = overrides
        self.attendance = attendance
        self.reminder_log = reminder_log
        self.lock = lock
        self.timezone = ZoneInfo(timezone or settings.ORG_TIMEZONE)
        self.max_concurrent_events = max_concurrent_events or settings.REMINDER_MAX_CONCURRENT_EVENTS
        self.lock_ttl_seconds = lock_ttl_seconds or settings.REMINDER_LOCK_TTL_SECONDS

    def civil_dates(self, now: datetime) -> tuple[date, date]:
        """Today and tomorrow in the organisation time zone. Naive ``now`` is read as UTC."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        today = now.astimezone(self.timezone).date()
        return today, today + timedelta(days=1)

    async def dispatch(self, now: datetime | None = None) -> DispatchSummary:
        """Run one reminder pass. Never raises."""
        today, tomorrow = self.civil_dates(now or datetime.now(UTC))
        with log_context(reminder_run=today.isoformat()):
            return await self._dispatch(DispatchSummary(today, tomorrow))

    async def _dispatch(self, summary: DispatchSummary) -> DispatchSummary:
        today, tomorrow = summary.today, summary.tomorrow
        lock_key = f"{LOCK_KEY_PREFIX}:{today.isoformat()}"
        acquired = None
        if self.lock is not None:
            acquired = await self.lock.try_acquire_lock(lock_key, self.lock_ttl_seconds)
            if acquired is False:
                summary.locked = True
                summary.finalize()
                logger.info("Reminder pass already running, skipping", today=today.isoformat())
                return summary
            if acquired is None:
                logger.info("Reminder run lock unavailable, continuing without it")

        logger.info(
            "Starting reminder pass",
            today=today.isoformat(),
            tomorrow=tomorrow.isoformat(),
            timezone=str(self.timezone),
        )

        try:
            await self._run(summary)
        finally:
            if acquired:
                await self.lock.release_lock(lock_key)

        summary.finalize()
        logger.info(
            "Reminder pass completed",
            **{k: v for k, v in summary.to_dict().items() if k != "results"},
        )
        return summary

    async def _run(self, summary: DispatchSummary) -> None:
        today, tomorrow = summary.today, summary.tomorrow
        try:
            single_events = await self.events.list_single_events_on([today, tomorrow])
            recurring_events = await self.events.list_recurring_candidates(today, tomorrow)
        except Exception as e:
            summary.record_processing_error("load_events", str(e))
            return

        semaphore = asyncio.Semaphore(self.max_concurrent_events)

        async def process(event: Event):
            async with semaphore:
                await self._process_event(event, summary)

        await asyncio.gather(*(process(event) for event in single_events + recurring_events))

    async def _occurrence_dates(self, event: Event, summary: DispatchSummary) -> list[date]:
        window_start, window_end = summary.today, summary.tomorrow + timedelta(days=1)
        dates = expand_event(event, window_start, window_end)
        if dates:
            cancelled = await self.overrides.cancelled_dates(event.id, window_start, window_end)
            dates = filter_cancelled(dates, cancelled)
        return dates

    async def _process_event(self, event: Event, summary: DispatchSummary) -> None:
        try:
            dates = await self._occurrence_dates(event, summary)
        except ExpansionFailure as e:
            summary.record_expansion_failure(event.id, str(e))
            return
        except Exception as e:
            summary.record_expansion_failure(event.id, f"{type(e).__name__}: {e}")
            return

        summary.events_processed += 1

        for occurrence_date in dates:
            kind = TemplateKind.DAY_OF if occurrence_date == summary.today else TemplateKind.DAY_BEFORE
            try:
                await self._process_occurrence(event, occurrence_date, kind, summary)
            except Exception as e:
                summary.record_processing_error(
                    "occurrence",
                    str(e),
                    event_id=event.id,
                    occurrence_date=occurrence_date.isoformat(),
                )

    async def _process_occurrence(
        self, event: Event, occurrence_date: date, kind: TemplateKind, summary: DispatchSummary
    ) -> None:
        recipients = await self.attendance.recipients(event.id, occurrence_date)
        summary.occurrences_processed += 1
        key = related_key(event, occurrence_date)

        # Sequential per occurrence: the send-log check and write for one
        # recipient must not interleave with another attempt for the same key.
        for recipient in recipients:
            await self._send_one(event, occurrence_date, kind, recipient, key, summary)

    async def _send_one(
        self,
        event: Event,
        occurrence_date: date,
        kind: TemplateKind,
        recipient: Recipient,
        key: str,
        summary: DispatchSummary,
    ) -> None:
        stats = summary.stats[kind]

        try:
            if await self.reminder_log.has_been_sent(kind, recipient.address, key):
                stats.skipped += 1
                return
        except Exception as e:
            stats.failed += 1
            summary.record_processing_error("send_log_lookup", str(e), related_key=key)
            return

        try:
            result = await self.sender.send(
                kind,
                recipient.address,
                _reminder_variables(event, occurrence_date, recipient),
                idempotency_key=f"{kind.value}:{recipient.address}:{key}",
            )
        except Exception as e:
            stats.failed += 1
            logger.warning(
                "Reminder delivery failed",
                template_kind=kind.value,
                related_key=key,
                recipient_kind=recipient.kind,
                error=str(e),
                recoverable=getattr(e, "recoverable", isinstance(e, DeliveryFailure)),
            )
            try:
                await self.reminder_log.record_failed(kind, recipient.address, key, str(e))
            except Exception as log_error:
                summary.record_processing_error("send_log_write", str(log_error), related_key=key)
            return

        if not result.delivered:
            stats.skipped += 1
            logger.info(
                "Reminder not delivered",
                template_kind=kind.value,
                related_key=key,
                reason=result.skipped_reason,
            )
            return

        stats.sent += 1
        try:
            recorded = await self.reminder_log.record_sent(kind, recipient.address, key)
        except Exception as e:
            summary.record_processing_error("send_log_write", str(e), related_key=key)
            return

        if not recorded:
            summary.duplicate_deliveries += 1
            logger.warning(
                "duplicate_delivery",
                template_kind=kind.value,
                related_key=key,
                recipient_kind=recipient.kind,
            )


def build_reminder_dispatcher(sender: NotificationSender | None = None) -> ReminderDispatcher:
    """Dispatcher wired to the Postgres stores, the Redis lock and the configured sender."""
    return ReminderDispatcher(sender=sender or build_notification_sender())
