"""
Domain subpackage for event scheduling.
"""

from .errors import (
    AttendanceRejected,
    CapacityExceeded,
    DeadlinePassed,
    DeliveryFailure,
    EventNotFound,
    EventNotOpen,
    ExpansionFailure,
    GuestAlreadyRegistered,
    MalformedRule,
    OccurrenceCancelled,
    OccurrenceNotFound,
    RecurrenceRuleLocked,
)
from .models import (
    REMINDER_STATUSES,
    AttendanceRecord,
    Event,
    EventInstance,
    GuestRsvp,
    InstanceOverride,
    OccurrenceRoster,
    Recipient,
    ReminderLogEntry,
    ReminderStatus,
    RsvpStatus,
    TemplateKind,
    related_key,
)
from .occurrences import (
    effective_end_date,
    is_occurrence,
    last_occurrence,
    next_occurrence,
    occurrences,
    shift_capped,
    split_series,
)
from .presets import CustomRecurrence, Preset, PresetKey, build_rule, describe, detect_preset, presets_for
from .recurrence import (
    AfterCount,
    Frequency,
    MonthlyPosition,
    Never,
    OnDate,
    RecurrenceRule,
    Weekday,
    day_ordinal,
    decode,
    encode,
)

__all__ = [
    "AfterCount",
    "AttendanceRecord",
    "AttendanceRejected",
    "CapacityExceeded",
    "CustomRecurrence",
    "DeadlinePassed",
    "DeliveryFailure",
    "Event",
    "EventInstance",
    "EventNotFound",
    "EventNotOpen",
    "ExpansionFailure",
    "Frequency",
    "GuestAlreadyRegistered",
    "GuestRsvp",
    "InstanceOverride",
    "MalformedRule",
    "MonthlyPosition",
    "Never",
    "OccurrenceCancelled",
    "OccurrenceNotFound",
    "OccurrenceRoster",
    "OnDate",
    "Preset",
    "PresetKey",
    "REMINDER_STATUSES",
    "Recipient",
    "RecurrenceRule",
    "RecurrenceRuleLocked",
    "ReminderLogEntry",
    "ReminderStatus",
    "RsvpStatus",
    "TemplateKind",
    "Weekday",
    "build_rule",
    "day_ordinal",
    "decode",
    "describe",
    "detect_preset",
    "effective_end_date",
    "encode",
    "is_occurrence",
    "last_occurrence",
    "next_occurrence",
    "occurrences",
    "presets_for",
    "shift_capped",
    "related_key",
    "split_series",
]
