"""
Append-only reminder send log.

A ``sent`` row is the permanent idempotence marker for a
(template, recipient, related key) triple; ``failed`` rows are history only.
"""

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.features.events.domain import ReminderLogEntry, ReminderStatus, TemplateKind
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ReminderLogRepository:
    """reminder_logs access."""

    async def has_been_sent(
        self, template_kind: TemplateKind, recipient_address: str, related_key: str
    ) -> bool:
        query = """
            SELECT 1
            FROM reminder_logs
            WHERE template_kind = %s
              AND recipient_address = %s
              AND related_key = %s
              AND status = 'sent'
            LIMIT 1
        """
        row = await fetch_one(
            query, (TemplateKind(template_kind).value, recipient_address, related_key)
        )
        return row is not None

    async def record_sent(
        self, template_kind: TemplateKind, recipient_address: str, related_key: str
    ) -> bool:
        """
        Append a ``sent`` row.

        Returns False when another pass already recorded the same send; the
        partial unique index on sent rows turns that into a no-op insert.
        """
        query = """
            INSERT INTO reminder_logs (template_kind, recipient_address, related_key, status)
            VALUES (%s, %s, %s, 'sent')
            ON CONFLICT (template_kind, recipient_address, related_key)
                WHERE status = 'sent'
            DO NOTHING
            RETURNING id
        """
        row = await fetch_one(
            query, (TemplateKind(template_kind).value, recipient_address, related_key)
        )
        return row is not None

    async def record_failed(
        self,
        template_kind: TemplateKind,
        recipient_address: str,
        related_key: str,
        error_message: str | None = None,
    ) -> None:
        query = """
            INSERT INTO reminder_logs (
                template_kind, recipient_address, related_key, status, error_message
            )
            VALUES (%s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                TemplateKind(template_kind).value,
                recipient_address,
                related_key,
                ReminderStatus.FAILED.value,
                (error_message or "")[:500] or None,
            ),
        )
        logger.debug(
            "Reminder failure recorded",
            template_kind=TemplateKind(template_kind).value,
            related_key=related_key,
        )

    async def has_sent_for_event(self, event_id: str) -> bool:
        """Whether any reminder was ever sent for the event or one of its occurrences."""
        query = """
            SELECT EXISTS (
                SELECT 1
                FROM reminder_logs
                WHERE status = 'sent'
                  AND (related_key = %s OR related_key LIKE %s)
            )
        """
        return bool(await fetch_val(query, (event_id, f"{event_id}:%")))

    async def list_entries(self, related_key: str) -> list[ReminderLogEntry]:
        """Every send attempt for one related key, oldest first."""
        query = """
            SELECT template_kind, recipient_address, related_key, status, sent_at, error_message
            FROM reminder_logs
            WHERE related_key = %s
            ORDER BY sent_at, id
        """
        rows = await fetch_all(query, (related_key,))
        return [
            ReminderLogEntry(
                template_kind=TemplateKind(row["template_kind"]),
                recipient_address=row["recipient_address"],
                related_key=row["related_key"],
                status=ReminderStatus(row["status"]),
                sent_at=row["sent_at"],
                error_message=row.get("error_message"),
            )
            for row in rows
        ]


reminder_log_repository = ReminderLogRepository()
