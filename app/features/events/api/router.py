"""
Event scheduling routes.

Recurrence authoring helpers (presets, preview), occurrence listing, RSVPs,
single-occurrence cancellation and per-occurrence reminder history. Who may
cancel an occurrence or read its RSVP list is decided upstream; these routes
only require an authenticated member.
"""

from datetime import date
from itertools import islice

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.auth.verify import current_member_id
from app.config import settings
from app.features.events.api.schemas import (
    CancellationResponse,
    CustomRecurrenceRequest,
    GuestRsvpEntry,
    GuestRsvpRequest,
    GuestRsvpResponse,
    InstanceResponse,
    InstancesResponse,
    MemberRsvpEntry,
    PresetResponse,
    PresetsResponse,
    PreviewRequest,
    PreviewResponse,
    ReminderHistoryResponse,
    ReminderLogEntryResponse,
    RsvpListResponse,
    RsvpRequest,
    RsvpResponse,
)
from app.features.events.domain import (
    AfterCount,
    AttendanceRejected,
    CustomRecurrence,
    ExpansionFailure,
    MalformedRule,
    Never,
    OnDate,
    RecurrenceRule,
    RecurrenceRuleLocked,
    Weekday,
    build_rule,
    decode,
    describe,
    detect_preset,
    effective_end_date,
    encode,
    occurrences,
    presets_for,
    shift_capped,
)
from app.features.events.domain.recurrence import EndCondition, parse_monthly_position
from app.features.events.services.attendance_service import AttendanceLedger, attendance_ledger
from app.features.events.services.occurrence_service import OccurrenceService, occurrence_service
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["events"])


def get_occurrence_service() -> OccurrenceService:
    return occurrence_service


def get_attendance_ledger() -> AttendanceLedger:
    return attendance_ledger


def _to_http_error(error: Exception) -> HTTPException:
    """Map domain errors to HTTP responses with a stable error code."""
    if isinstance(error, MalformedRule):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "malformed_rule", "message": str(error), "field": error.field},
        )
    if isinstance(error, AttendanceRejected):
        return HTTPException(
            status_code=error.http_status, detail={"code": error.code, "message": str(error)}
        )
    if isinstance(error, RecurrenceRuleLocked):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "recurrence_rule_locked", "message": str(error)},
        )
    if isinstance(error, ExpansionFailure):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "expansion_failure", "message": str(error)},
        )
    if isinstance(error, ValueError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_request", "message": str(error)},
        )

    logger.error("Unexpected event scheduling error", error=str(error), error_type=type(error).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )


def _end_condition(body: PreviewRequest) -> EndCondition:
    if body.end_type == "date":
        if body.end_date is None:
            raise MalformedRule("end_date is required when end_type is 'date'", field="end_date")
        return OnDate(body.end_date)
    if body.end_type == "count":
        if body.count is None:
            raise MalformedRule("count is required when end_type is 'count'", field="count")
        return AfterCount(body.count)
    return Never()


def _custom_recurrence(custom: CustomRecurrenceRequest | None) -> CustomRecurrence | None:
    if custom is None:
        return None
    return CustomRecurrence(
        frequency=custom.frequency,
        interval=custom.interval,
        weekdays=frozenset(Weekday[code] for code in custom.weekdays),
        monthly_position=(
            parse_monthly_position(custom.monthly_position) if custom.monthly_position else None
        ),
    )


def _preview_rule(body: PreviewRequest) -> RecurrenceRule:
    if body.rule:
        return decode(body.rule, anchor_date=body.start_date)
    if body.preset is None or body.start_date is None:
        raise MalformedRule("Provide either a rule or a preset with a start date")
    return build_rule(
        body.preset, body.start_date, end=_end_condition(body), custom=_custom_recurrence(body.custom)
    )


# =================================================================
# RECURRENCE AUTHORING
# =================================================================


@router.get("/recurrence/presets", response_model=PresetsResponse)
async def list_recurrence_presets(start_date: date | None = Query(default=None)):
    """Preset choices worded from the start date."""
    presets = presets_for(start_date)
    return PresetsResponse(
        start_date=start_date,
        presets=[
            PresetResponse(
                key=preset.key,
                label=preset.label,
                rule=encode(preset.rule) if preset.rule else None,
                description=describe(preset.rule) if preset.rule else None,
            )
            for preset in presets
        ],
    )


@router.post("/recurrence/preview", response_model=PreviewResponse)
async def preview_recurrence(body: PreviewRequest):
    """Validate a rule and list its first occurrences."""
    try:
        rule = _preview_rule(body)
        range_start = body.range_start or rule.anchor_date
        range_end = body.range_end or shift_capped(range_start, settings.RECURRENCE_HORIZON_DAYS)
        limit = min(body.limit or settings.RECURRENCE_PREVIEW_LIMIT, settings.RECURRENCE_PREVIEW_LIMIT)

        dates = list(islice(occurrences(rule, range_start, range_end), limit + 1))
        end_date = effective_end_date(rule, settings.RECURRENCE_HORIZON_DAYS)
    except (MalformedRule, ValueError) as e:
        raise _to_http_error(e) from e

    return PreviewResponse(
        rule=encode(rule),
        description=describe(rule),
        detected_preset=detect_preset(rule),
        occurrences=dates[:limit],
        truncated=len(dates) > limit,
        effective_end_date=end_date,
    )


# =================================================================
# OCCURRENCES
# =================================================================


@router.get("/events/{event_id}/instances", response_model=InstancesResponse)
async def list_event_instances(
    event_id: str,
    start: date = Query(..., description="Inclusive range start"),
    end: date = Query(..., description="Exclusive range end"),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Non-cancelled occurrences of an event within [start, end)."""
    try:
        instances = await service.list_instances(event_id, start, end)
    except Exception as e:
        raise _to_http_error(e) from e

    return InstancesResponse(
        event_id=event_id,
        range_start=start,
        range_end=end,
        instances=[
            InstanceResponse(
                event_id=instance.event.id,
                occurrence_date=instance.occurrence_date,
                title=instance.event.title,
                is_recurring=instance.event.is_recurring,
                related_key=instance.related_key,
            )
            for instance in instances
        ],
    )


@router.post(
    "/events/{event_id}/occurrences/{occurrence_date}/cancellation",
    response_model=CancellationResponse,
)
async def cancel_occurrence(
    event_id: str,
    occurrence_date: date,
    member_id: str = Depends(current_member_id),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        await service.cancel_occurrence(event_id, occurrence_date)
    except Exception as e:
        raise _to_http_error(e) from e

    logger.info(
        "Occurrence cancellation requested",
        event_id=event_id,
        occurrence_date=occurrence_date.isoformat(),
        member_id=member_id,
    )
    return CancellationResponse(event_id=event_id, occurrence_date=occurrence_date, is_cancelled=True)


@router.delete(
    "/events/{event_id}/occurrences/{occurrence_date}/cancellation",
    response_model=CancellationResponse,
)
async def uncancel_occurrence(
    event_id: str,
    occurrence_date: date,
    member_id: str = Depends(current_member_id),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        await service.uncancel_occurrence(event_id, occurrence_date)
    except Exception as e:
        raise _to_http_error(e) from e

    logger.info(
        "Occurrence restored",
        event_id=event_id,
        occurrence_date=occurrence_date.isoformat(),
        member_id=member_id,
    )
    return CancellationResponse(event_id=event_id, occurrence_date=occurrence_date, is_cancelled=False)


@router.get(
    "/events/{event_id}/occurrences/{occurrence_date}/reminders",
    response_model=ReminderHistoryResponse,
)
async def occurrence_reminder_history(
    event_id: str,
    occurrence_date: date,
    member_id: str = Depends(current_member_id),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Reminder send log for one occurrence, failures included."""
    try:
        key, entries = await service.reminder_history(event_id, occurrence_date)
    except Exception as e:
        raise _to_http_error(e) from e

    return ReminderHistoryResponse(
        event_id=event_id,
        occurrence_date=occurrence_date,
        related_key=key,
        entries=[
            ReminderLogEntryResponse(
                template_kind=entry.template_kind,
                recipient_address=entry.recipient_address,
                status=entry.status,
                sent_at=entry.sent_at,
                error_message=entry.error_message,
            )
            for entry in entries
        ],
    )


# =================================================================
# RSVPS
# =================================================================


@router.get("/events/{event_id}/occurrences/{occurrence_date}/rsvps", response_model=RsvpListResponse)
async def list_rsvps(
    event_id: str,
    occurrence_date: date,
    member_id: str = Depends(current_member_id),
    ledger: AttendanceLedger = Depends(get_attendance_ledger),
):
    """Every RSVP for one occurrence, including cancelled ones."""
    try:
        roster = await ledger.list_records(event_id, occurrence_date)
    except Exception as e:
        raise _to_http_error(e) from e

    return RsvpListResponse(
        event_id=roster.event_id,
        occurrence_date=roster.occurrence_date,
        is_cancelled=roster.is_cancelled,
        members=[
            MemberRsvpEntry(
                participant_id=record.participant_id,
                first_name=record.participant_name,
                email=record.participant_address,
                status=record.status,
                guest_count=record.guest_count,
                notes=record.notes,
                updated_at=record.updated_at,
            )
            for record in roster.records
        ],
        guests=[
            GuestRsvpEntry(id=guest.id, name=guest.name, email=guest.address, status=guest.status)
            for guest in roster.guests
        ],
        totals=roster.totals(),
    )


@router.put("/events/{event_id}/occurrences/{occurrence_date}/rsvp", response_model=RsvpResponse)
async def upsert_rsvp(
    event_id: str,
    occurrence_date: date,
    body: RsvpRequest,
    member_id: str = Depends(current_member_id),
    ledger: AttendanceLedger = Depends(get_attendance_ledger),
):
    """Create or replace the member's RSVP for one occurrence."""
    try:
        record = await ledger.upsert(
            event_id,
            occurrence_date,
            member_id,
            body.status,
            guest_count=body.guest_count,
            notes=body.notes,
        )
        headcount = await ledger.headcount(event_id, occurrence_date)
    except Exception as e:
        raise _to_http_error(e) from e

    return RsvpResponse(
        event_id=record.event_id,
        occurrence_date=record.occurrence_date,
        participant_id=record.participant_id,
        status=record.status,
        guest_count=record.guest_count,
        notes=record.notes,
        updated_at=record.updated_at,
        headcount=headcount,
    )


@router.delete(
    "/events/{event_id}/occurrences/{occurrence_date}/rsvp",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_rsvp(
    event_id: str,
    occurrence_date: date,
    member_id: str = Depends(current_member_id),
    ledger: AttendanceLedger = Depends(get_attendance_ledger),
):
    try:
        removed = await ledger.remove(event_id, occurrence_date, member_id)
    except Exception as e:
        raise _to_http_error(e) from e

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "rsvp_not_found", "message": "No RSVP to withdraw"},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/events/{event_id}/occurrences/{occurrence_date}/guest-rsvp",
    response_model=GuestRsvpResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_guest_rsvp(
    event_id: str,
    occurrence_date: date,
    body: GuestRsvpRequest,
    ledger: AttendanceLedger = Depends(get_attendance_ledger),
):
    """Public RSVP for non-members."""
    try:
        guest = await ledger.register_guest(event_id, occurrence_date, body.name, body.email)
    except Exception as e:
        raise _to_http_error(e) from e

    return GuestRsvpResponse(
        id=guest.id,
        event_id=guest.event_id,
        occurrence_date=guest.occurrence_date,
        name=guest.name,
        status=guest.status,
    )
