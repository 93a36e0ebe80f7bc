"""
Per-occurrence overrides (currently only cancellation).
"""

from datetime import date

from app.db.helpers import fetch_all, fetch_one
from app.features.events.domain import InstanceOverride
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OverrideRepository:
    """event_instance_overrides keyed by (event_id, instance_date)."""

    COLUMNS = "event_id, instance_date, is_cancelled"

    @staticmethod
    def _row_to_override(row: dict | None) -> InstanceOverride | None:
        if not row:
            return None

        return InstanceOverride(
            event_id=str(row["event_id"]),
            occurrence_date=row["instance_date"],
            is_cancelled=bool(row["is_cancelled"]),
        )

    async def get(self, event_id: str, occurrence_date: date) -> InstanceOverride | None:
        query = f"""
            SELECT {self.COLUMNS}
            FROM event_instance_overrides
            WHERE event_id = %s AND instance_date = %s
        """
        return self._row_to_override(await fetch_one(query, (event_id, occurrence_date)))

    async def list_overrides(
        self, event_id: str, date_from: date, date_to: date
    ) -> list[InstanceOverride]:
        """Overrides in the half-open range [date_from, date_to), cancelled or restored."""
        query = f"""
            SELECT {self.COLUMNS}
            FROM event_instance_overrides
            WHERE event_id = %s
              AND instance_date >= %s
              AND instance_date < %s
            ORDER BY instance_date
        """
        rows = await fetch_all(query, (event_id, date_from, date_to))
        return [self._row_to_override(row) for row in rows]

    async def is_cancelled(self, event_id: str, occurrence_date: date) -> bool:
        override = await self.get(event_id, occurrence_date)
        return override is not None and override.is_cancelled

    async def cancelled_dates(self, event_id: str, date_from: date, date_to: date) -> set[date]:
        """Cancelled occurrence dates in the half-open range [date_from, date_to)."""
        overrides = await self.list_overrides(event_id, date_from, date_to)
        return {override.occurrence_date for override in overrides if override.is_cancelled}

    async def _set_cancelled(
        self, event_id: str, occurrence_date: date, cancelled: bool
    ) -> InstanceOverride:
        query = f"""
            INSERT INTO event_instance_overrides (event_id, instance_date, is_cancelled)
            VALUES (%s, %s, %s)
            ON CONFLICT (event_id, instance_date)
            DO UPDATE SET
                is_cancelled = EXCLUDED.is_cancelled,
                updated_at = NOW()
            RETURNING {self.COLUMNS}
        """
        row = await fetch_one(query, (event_id, occurrence_date, cancelled))
        return self._row_to_override(row)

    async def cancel(self, event_id: str, occurrence_date: date) -> InstanceOverride:
        """Mark one occurrence cancelled. Attendance rows are left untouched."""
        override = await self._set_cancelled(event_id, occurrence_date, True)
        logger.info(
            "Occurrence cancelled", event_id=event_id, occurrence_date=occurrence_date.isoformat()
        )
        return override

    async def uncancel(self, event_id: str, occurrence_date: date) -> InstanceOverride:
        override = await self._set_cancelled(event_id, occurrence_date, False)
        logger.info(
            "Occurrence restored", event_id=event_id, occurrence_date=occurrence_date.isoformat()
        )
        return override


override_repository = OverrideRepository()
