"""
External trigger for the daily reminder pass.

Idempotent under repeated invocation; ``now`` may be forced for testing.
When CRON_SECRET is set the caller must send it as a bearer token.
"""

import hmac
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.config import settings
from app.features.events.services.notification_client import build_notification_sender
from app.features.events.services.reminder_dispatcher import ReminderDispatcher
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    secret = settings.CRON_SECRET
    if not secret:
        return
    if not authorization or not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_reminder_dispatcher():
    try:
        sender = build_notification_sender()
    except RuntimeError as e:
        logger.error("Reminder dispatcher unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification service is not configured",
        ) from e

    try:
        yield ReminderDispatcher(sender=sender)
    finally:
        await sender.close()


@router.api_route("/event-reminders", methods=["GET", "POST"])
async def trigger_event_reminders(
    now: datetime | None = Query(default=None, description="Override the current time"),
    _: None = Depends(verify_cron_secret),
    dispatcher: ReminderDispatcher = Depends(get_reminder_dispatcher),
) -> dict:
    summary = await dispatcher.dispatch(now=now)
    return {"success": True, "timestamp": datetime.now().astimezone().isoformat(), **summary.to_dict()}
