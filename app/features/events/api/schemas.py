"""
Request and response models for the event scheduling routes.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.features.events.domain import PresetKey, ReminderStatus, RsvpStatus, TemplateKind


class PresetResponse(BaseModel):
    key: PresetKey
    label: str
    rule: str | None = Field(default=None, description="Encoded rule, absent for Custom")
    description: str | None = None


class PresetsResponse(BaseModel):
    start_date: date | None
    presets: list[PresetResponse]


class CustomRecurrenceRequest(BaseModel):
    """Cadence for the Custom preset."""

    frequency: Literal["DAILY", "WEEKLY", "MONTHLY"] = "WEEKLY"
    interval: int = Field(default=1, ge=1, le=99)
    weekdays: list[Literal["MO", "TU", "WE", "TH", "FR", "SA", "SU"]] = Field(default_factory=list)
    monthly_position: str | None = Field(
        default=None, description="Ordinal weekday such as 3MO or -1FR"
    )


class PreviewRequest(BaseModel):
    """Either an encoded rule, or a preset applied to a start date."""

    rule: str | None = Field(default=None, description="Encoded rule, e.g. FREQ=WEEKLY;BYDAY=WE")
    preset: PresetKey | None = None
    start_date: date | None = Field(default=None, description="Anchor date for presets")
    end_type: Literal["never", "date", "count"] = "never"
    end_date: date | None = None
    count: int | None = Field(default=None, ge=1, le=1000)
    custom: CustomRecurrenceRequest | None = None
    range_start: date | None = Field(default=None, description="Defaults to the anchor date")
    range_end: date | None = Field(default=None, description="Exclusive; defaults to the horizon")
    limit: int | None = Field(default=None, ge=1, le=500)


class PreviewResponse(BaseModel):
    rule: str
    description: str
    detected_preset: PresetKey | None
    occurrences: list[date]
    truncated: bool
    effective_end_date: date


class InstanceResponse(BaseModel):
    event_id: str
    occurrence_date: date
    title: str
    is_recurring: bool
    related_key: str


class InstancesResponse(BaseModel):
    event_id: str
    range_start: date
    range_end: date
    instances: list[InstanceResponse]


class RsvpRequest(BaseModel):
    status: RsvpStatus
    guest_count: int = Field(default=0, ge=0, le=20)
    notes: str | None = Field(default=None, max_length=1000)


class RsvpResponse(BaseModel):
    event_id: str
    occurrence_date: date
    participant_id: str
    status: RsvpStatus
    guest_count: int
    notes: str | None = None
    updated_at: datetime | None = None
    headcount: int


class GuestRsvpRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class GuestRsvpResponse(BaseModel):
    id: str
    event_id: str
    occurrence_date: date
    name: str
    status: RsvpStatus


class CancellationResponse(BaseModel):
    event_id: str
    occurrence_date: date
    is_cancelled: bool


class MemberRsvpEntry(BaseModel):
    participant_id: str
    first_name: str | None = None
    email: str | None = None
    status: RsvpStatus
    guest_count: int
    notes: str | None = None
    updated_at: datetime | None = None


class GuestRsvpEntry(BaseModel):
    id: str
    name: str
    email: str
    status: RsvpStatus


class RsvpListResponse(BaseModel):
    """All RSVPs for one occurrence, with per-status people totals."""

    event_id: str
    occurrence_date: date
    is_cancelled: bool
    members: list[MemberRsvpEntry]
    guests: list[GuestRsvpEntry]
    totals: dict[str, int]


class ReminderLogEntryResponse(BaseModel):
    template_kind: TemplateKind
    recipient_address: str
    status: ReminderStatus
    sent_at: datetime
    error_message: str | None = None


class ReminderHistoryResponse(BaseModel):
    event_id: str
    occurrence_date: date
    related_key: str
    entries: list[ReminderLogEntryResponse]
