"""
Preset recurrence choices derived from a start date, and plain-English rule
descriptions for authoring screens.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from app.features.events.domain.errors import MalformedRule
from app.features.events.domain.recurrence import (
    LAST,
    AfterCount,
    EndCondition,
    Frequency,
    MonthlyPosition,
    Never,
    OnDate,
    RecurrenceRule,
    Weekday,
    day_ordinal,
)

ORDINAL_LABELS = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", LAST: "last"}


class PresetKey(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY_SAME_WEEK = "monthly_same_week"
    MONTHLY_LAST = "monthly_last"
    BIMONTHLY = "bimonthly"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class Preset:
    key: PresetKey
    label: str
    rule: RecurrenceRule | None = None


@dataclass(frozen=True, slots=True)
class CustomRecurrence:
    """Author-chosen cadence behind the Custom preset."""

    frequency: Frequency = Frequency.WEEKLY
    interval: int = 1
    weekdays: frozenset[Weekday] = field(default_factory=frozenset)
    monthly_position: MonthlyPosition | None = None


GENERIC_PRESETS = [
    Preset(PresetKey.DAILY, "Daily"),
    Preset(PresetKey.WEEKLY, "Weekly"),
    Preset(PresetKey.BIWEEKLY, "Every 2 weeks"),
    Preset(PresetKey.MONTHLY_SAME_WEEK, "Monthly (same weekday)"),
    Preset(PresetKey.MONTHLY_LAST, "Monthly (last weekday)"),
    Preset(PresetKey.BIMONTHLY, "Every 2 months"),
    Preset(PresetKey.CUSTOM, "Custom"),
]


def _ordinal_label(ordinal: int) -> str:
    return ORDINAL_LABELS.get(ordinal, f"{ordinal}th")


def _join_names(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


def _format_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def presets_for(anchor_date: date | None) -> list[Preset]:
    """
    Recurrence presets for an event starting on ``anchor_date``.

    Labels are worded from the date itself ("Weekly on Wednesdays",
    "Monthly on the 3rd Monday"). The last-weekday preset is only offered
    when the anchor actually is the last such weekday of its month.
    Without a date, generic labels without rules are returned.
    """
    if anchor_date is None:
        return list(GENERIC_PRESETS)

    located = day_ordinal(anchor_date)
    day_name = located.day_name
    ordinal = _ordinal_label(located.ordinal)

    presets = [
        Preset(PresetKey.DAILY, "Daily", build_rule(PresetKey.DAILY, anchor_date)),
        Preset(
            PresetKey.WEEKLY, f"Weekly on {day_name}s", build_rule(PresetKey.WEEKLY, anchor_date)
        ),
        Preset(
            PresetKey.BIWEEKLY,
            f"Every 2 weeks on {day_name}s",
            build_rule(PresetKey.BIWEEKLY, anchor_date),
        ),
        Preset(
            PresetKey.MONTHLY_SAME_WEEK,
            f"Monthly on the {ordinal} {day_name}",
            build_rule(PresetKey.MONTHLY_SAME_WEEK, anchor_date),
        ),
    ]
    if located.is_last:
        presets.append(
            Preset(
                PresetKey.MONTHLY_LAST,
                f"Monthly on the last {day_name}",
                build_rule(PresetKey.MONTHLY_LAST, anchor_date),
            )
        )
    presets.append(
        Preset(
            PresetKey.BIMONTHLY,
            f"Every 2 months on the {ordinal} {day_name}",
            build_rule(PresetKey.BIMONTHLY, anchor_date),
        )
    )
    presets.append(Preset(PresetKey.CUSTOM, "Custom"))
    return presets


def build_rule(
    preset_key: PresetKey | str,
    anchor_date: date,
    end: EndCondition | None = None,
    custom: CustomRecurrence | None = None,
) -> RecurrenceRule:
    """
    Build the rule behind a preset.

    Raises:
        MalformedRule: unknown preset, missing custom cadence, or a
            combination the anchor date cannot satisfy
    """
    try:
        key = PresetKey(preset_key)
    except ValueError as e:
        raise MalformedRule(f"Unknown recurrence preset: {preset_key}", field="preset") from e

    end = end if end is not None else Never()
    located = day_ordinal(anchor_date)
    anchor_weekday = frozenset({located.weekday})

    if key is PresetKey.DAILY:
        return RecurrenceRule(Frequency.DAILY, anchor_date, end=end)
    if key is PresetKey.WEEKLY:
        return RecurrenceRule(Frequency.WEEKLY, anchor_date, by_weekday=anchor_weekday, end=end)
    if key is PresetKey.BIWEEKLY:
        return RecurrenceRule(
            Frequency.WEEKLY, anchor_date, interval=2, by_weekday=anchor_weekday, end=end
        )
    if key is PresetKey.MONTHLY_SAME_WEEK:
        position = MonthlyPosition(located.ordinal, located.weekday)
        return RecurrenceRule(Frequency.MONTHLY, anchor_date, monthly_position=position, end=end)
    if key is PresetKey.MONTHLY_LAST:
        position = MonthlyPosition(LAST, located.weekday)
        return RecurrenceRule(Frequency.MONTHLY, anchor_date, monthly_position=position, end=end)
    if key is PresetKey.BIMONTHLY:
        position = MonthlyPosition(located.ordinal, located.weekday)
        return RecurrenceRule(
            Frequency.MONTHLY, anchor_date, interval=2, monthly_position=position, end=end
        )

    if custom is None:
        raise MalformedRule("Custom recurrence requires a cadence", field="custom")

    weekdays = custom.weekdays
    if custom.frequency == Frequency.WEEKLY and not weekdays:
        weekdays = anchor_weekday

    return RecurrenceRule(
        frequency=custom.frequency,
        anchor_date=anchor_date,
        interval=custom.interval,
        by_weekday=weekdays,
        monthly_position=custom.monthly_position,
        end=end,
    )


def detect_preset(rule: RecurrenceRule) -> PresetKey | None:
    """
    Match a rule against the preset shapes, ignoring its end condition.

    Returns None for anything that only the Custom preset can express.
    """
    if rule.frequency is Frequency.DAILY:
        return PresetKey.DAILY if rule.interval == 1 else None

    located = day_ordinal(rule.anchor_date)

    if rule.frequency is Frequency.WEEKLY:
        if rule.weekdays != (located.weekday,):
            return None
        return {1: PresetKey.WEEKLY, 2: PresetKey.BIWEEKLY}.get(rule.interval)

    position = rule.monthly_position
    if position is None:
        return None
    if position.ordinal == LAST:
        return PresetKey.MONTHLY_LAST if rule.interval == 1 else None
    return {1: PresetKey.MONTHLY_SAME_WEEK, 2: PresetKey.BIMONTHLY}.get(rule.interval)


def _describe_cadence(rule: RecurrenceRule) -> str:
    if rule.frequency is Frequency.DAILY:
        return "Daily" if rule.interval == 1 else f"Every {rule.interval} days"

    if rule.frequency is Frequency.WEEKLY:
        prefix = "Weekly" if rule.interval == 1 else f"Every {rule.interval} weeks"
        return f"{prefix} on {_join_names([day.day_name for day in rule.weekdays])}"

    prefix = "Monthly" if rule.interval == 1 else f"Every {rule.interval} months"
    position = rule.monthly_position
    if position is None:
        return f"{prefix} on day {rule.anchor_date.day}"
    return f"{prefix} on the {_ordinal_label(position.ordinal)} {position.weekday.day_name}"


def describe(rule: RecurrenceRule) -> str:
    """Human-readable sentence, e.g. "Every 2 weeks on Monday and Wednesday, 3 times"."""
    text = _describe_cadence(rule)

    end = rule.end
    if isinstance(end, AfterCount):
        text += ", once" if end.count == 1 else f", {end.count} times"
    elif isinstance(end, OnDate):
        text += f", until {_format_date(end.until)}"
    return text
