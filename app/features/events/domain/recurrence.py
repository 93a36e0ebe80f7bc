"""
Recurrence rule value type and its wire codec.

Rules are stored next to the event as a compact iCalendar-style string:

    FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;DTSTART=20250312;COUNT=3
    FREQ=MONTHLY;BYDAY=-1FR;DTSTART=20250328;UNTIL=20251231

All arithmetic is on civil dates; there is no time-of-day or time zone in a
rule.
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum, IntEnum

from app.features.events.domain.errors import MalformedRule


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class Weekday(IntEnum):
    """Weekday codes, numbered like date.weekday()."""

    MO = 0
    TU = 1
    WE = 2
    TH = 3
    FR = 4
    SA = 5
    SU = 6

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.value]


DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

LAST = -1  # ordinal for "last <weekday> of the month"

MAX_INTERVAL = 999
MAX_OCCURRENCE_COUNT = 1000


@dataclass(frozen=True, slots=True)
class Never:
    """The series has no end."""


@dataclass(frozen=True, slots=True)
class OnDate:
    until: date


@dataclass(frozen=True, slots=True)
class AfterCount:
    count: int


EndCondition = Never | OnDate | AfterCount


@dataclass(frozen=True, slots=True)
class MonthlyPosition:
    """The Nth (1-5) or last (-1) weekday of a month."""

    ordinal: int
    weekday: Weekday

    def __post_init__(self):
        if self.ordinal != LAST and not 1 <= self.ordinal <= 5:
            raise MalformedRule(
                f"Monthly ordinal must be 1-5 or -1, got {self.ordinal}", field="BYDAY"
            )
        object.__setattr__(self, "weekday", Weekday(self.weekday))


@dataclass(frozen=True, slots=True)
class DayOrdinal:
    weekday: Weekday
    ordinal: int
    is_last: bool

    @property
    def day_name(self) -> str:
        return self.weekday.day_name


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def day_ordinal(day: date) -> DayOrdinal:
    """
    Locate a date within its month by weekday.

    The ordinal is how many times the date's weekday has occurred in the
    month up to and including the date; ``is_last`` tells whether no further
    occurrence of that weekday fits in the month.
    """
    ordinal = (day.day - 1) // 7 + 1
    is_last = day.day + 7 > days_in_month(day.year, day.month)
    return DayOrdinal(weekday=Weekday(day.weekday()), ordinal=ordinal, is_last=is_last)


def position_matches(position: MonthlyPosition, day: date) -> bool:
    located = day_ordinal(day)
    if located.weekday != position.weekday:
        return False
    if position.ordinal == LAST:
        return located.is_last
    return located.ordinal == position.ordinal


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """
    "Repeat every N days/weeks/months, starting on the anchor date."

    WEEKLY rules recur on ``by_weekday`` (empty means the anchor's weekday).
    MONTHLY rules recur on ``monthly_position`` or, without one, on the
    anchor's day of the month. The anchor is always the first occurrence.
    """

    frequency: Frequency
    anchor_date: date
    interval: int = 1
    by_weekday: frozenset[Weekday] = field(default_factory=frozenset)
    monthly_position: MonthlyPosition | None = None
    end: EndCondition = field(default_factory=Never)

    def __post_init__(self):
        try:
            object.__setattr__(self, "frequency", Frequency(self.frequency))
        except ValueError as e:
            raise MalformedRule(f"Unsupported frequency: {self.frequency}", field="FREQ") from e

        if not isinstance(self.anchor_date, date):
            raise MalformedRule("Anchor date is required", field="DTSTART")

        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise MalformedRule(
                f"Interval must be a positive integer, got {self.interval!r}", field="INTERVAL"
            )
        if self.interval > MAX_INTERVAL:
            raise MalformedRule(
                f"Interval must be at most {MAX_INTERVAL}, got {self.interval}", field="INTERVAL"
            )

        weekdays = frozenset(Weekday(w) for w in self.by_weekday)
        object.__setattr__(self, "by_weekday", weekdays)

        if weekdays and self.frequency is not Frequency.WEEKLY:
            raise MalformedRule("A weekday list is only valid for WEEKLY rules", field="BYDAY")
        if weekdays and self.anchor_date.weekday() not in weekdays:
            raise MalformedRule(
                "Weekday list must include the anchor date's weekday", field="BYDAY"
            )

        if self.monthly_position is not None:
            if self.frequency is not Frequency.MONTHLY:
                raise MalformedRule(
                    "A monthly position is only valid for MONTHLY rules", field="BYDAY"
                )
            if not position_matches(self.monthly_position, self.anchor_date):
                raise MalformedRule(
                    f"Monthly position does not match anchor date {self.anchor_date.isoformat()}",
                    field="BYDAY",
                )

        self._validate_end()

    def _validate_end(self) -> None:
        end = self.end
        if isinstance(end, Never):
            return
        if isinstance(end, OnDate):
            if end.until < self.anchor_date:
                raise MalformedRule("End date precedes the anchor date", field="UNTIL")
            return
        if isinstance(end, AfterCount):
            if isinstance(end.count, bool) or not isinstance(end.count, int) or end.count < 1:
                raise MalformedRule(
                    f"Occurrence count must be a positive integer, got {end.count!r}",
                    field="COUNT",
                )
            if end.count > MAX_OCCURRENCE_COUNT:
                raise MalformedRule(
                    f"Occurrence count must be at most {MAX_OCCURRENCE_COUNT}, got {end.count}",
                    field="COUNT",
                )
            return
        raise MalformedRule(f"Unknown end condition: {end!r}", field="END")

    @property
    def weekdays(self) -> tuple[Weekday, ...]:
        """Effective weekdays of a WEEKLY rule, in week order."""
        if self.by_weekday:
            return tuple(sorted(self.by_weekday))
        return (Weekday(self.anchor_date.weekday()),)

    @property
    def is_bounded(self) -> bool:
        return not isinstance(self.end, Never)


# =================================================================
# CODEC
# =================================================================

_DATE_PATTERN = re.compile(r"^(\d{4})-?(\d{2})-?(\d{2})(T\d{6}Z?)?$")
_BYDAY_PATTERN = re.compile(r"^([+-]?\d)?(MO|TU|WE|TH|FR|SA|SU)$")


def _format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def _parse_date(value: str, key: str) -> date:
    match = _DATE_PATTERN.match(value.strip())
    if not match:
        raise MalformedRule(f"Invalid date for {key}: {value!r}", field=key)
    year, month, day = (int(part) for part in match.group(1, 2, 3))
    try:
        return date(year, month, day)
    except ValueError as e:
        raise MalformedRule(f"Invalid date for {key}: {value!r}", field=key) from e


def _parse_int(value: str, key: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise MalformedRule(f"{key} must be an integer, got {value!r}", field=key) from e


def _parse_byday(value: str) -> tuple[frozenset[Weekday], MonthlyPosition | None]:
    weekdays: set[Weekday] = set()
    positions: list[MonthlyPosition] = []

    for item in value.split(","):
        match = _BYDAY_PATTERN.match(item.strip().upper())
        if not match:
            raise MalformedRule(f"Invalid BYDAY entry: {item!r}", field="BYDAY")
        ordinal, code = match.groups()
        if ordinal is None:
            weekdays.add(Weekday[code])
        else:
            positions.append(MonthlyPosition(int(ordinal), Weekday[code]))

    if positions and (weekdays or len(positions) > 1):
        raise MalformedRule("Only a single ordinal weekday is supported", field="BYDAY")

    return frozenset(weekdays), (positions[0] if positions else None)


def parse_monthly_position(text: str) -> MonthlyPosition:
    """Parse a single ordinal weekday such as ``3MO`` or ``-1FR``."""
    weekdays, position = _parse_byday(text)
    if position is None or weekdays:
        raise MalformedRule(f"Expected an ordinal weekday, got {text!r}", field="BYDAY")
    return position


def _split_fields(text: str) -> tuple[dict[str, str], date | None]:
    """Split 'KEY=VALUE;...' into a dict, accepting DTSTART:/RRULE: content lines."""
    fields: dict[str, str] = {}
    dtstart_line: date | None = None

    for line in text.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        upper = line.upper()
        if upper.startswith("DTSTART:"):
            dtstart_line = _parse_date(line.split(":", 1)[1], "DTSTART")
            continue
        if upper.startswith("RRULE:"):
            line = line.split(":", 1)[1]

        for segment in line.split(";"):
            segment = segment.strip()
            if not segment:
                continue
            if "=" not in segment:
                raise MalformedRule(f"Expected KEY=VALUE, got {segment!r}")
            key, value = segment.split("=", 1)
            key = key.strip().upper()
            if key in fields:
                raise MalformedRule(f"Duplicate field {key}", field=key)
            fields[key] = value.strip()

    return fields, dtstart_line


def encode(rule: RecurrenceRule) -> str:
    """Serialize a rule to its wire string."""
    parts = [f"FREQ={rule.frequency.value}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.by_weekday:
        parts.append("BYDAY=" + ",".join(day.name for day in sorted(rule.by_weekday)))
    if rule.monthly_position is not None:
        position = rule.monthly_position
        parts.append(f"BYDAY={position.ordinal}{position.weekday.name}")
    parts.append(f"DTSTART={_format_date(rule.anchor_date)}")

    if isinstance(rule.end, OnDate):
        parts.append(f"UNTIL={_format_date(rule.end.until)}")
    elif isinstance(rule.end, AfterCount):
        parts.append(f"COUNT={rule.end.count}")

    return ";".join(parts)


def decode(text: str, anchor_date: date | None = None) -> RecurrenceRule:
    """
    Parse a wire string into a RecurrenceRule.

    ``anchor_date`` is used when the string carries no DTSTART (rules stored
    alongside an event start date). Unknown fields are ignored.

    Raises:
        MalformedRule: on any missing, duplicated or invalid field
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedRule("Recurrence rule is empty")

    fields, dtstart_line = _split_fields(text)

    if "FREQ" not in fields:
        raise MalformedRule("FREQ is required", field="FREQ")
    try:
        frequency = Frequency(fields["FREQ"].upper())
    except ValueError as e:
        raise MalformedRule(f"Unsupported frequency: {fields['FREQ']}", field="FREQ") from e

    if "DTSTART" in fields:
        anchor = _parse_date(fields["DTSTART"], "DTSTART")
    elif dtstart_line is not None:
        anchor = dtstart_line
    elif anchor_date is not None:
        anchor = anchor_date
    else:
        raise MalformedRule("DTSTART is required", field="DTSTART")

    interval = _parse_int(fields["INTERVAL"], "INTERVAL") if "INTERVAL" in fields else 1

    weekdays: frozenset[Weekday] = frozenset()
    position = None
    if "BYDAY" in fields:
        weekdays, position = _parse_byday(fields["BYDAY"])

    if "UNTIL" in fields and "COUNT" in fields:
        raise MalformedRule("UNTIL and COUNT are mutually exclusive", field="END")
    if "UNTIL" in fields:
        end: EndCondition = OnDate(_parse_date(fields["UNTIL"], "UNTIL"))
    elif "COUNT" in fields:
        end = AfterCount(_parse_int(fields["COUNT"], "COUNT"))
    else:
        end = Never()

    return RecurrenceRule(
        frequency=frequency,
        anchor_date=anchor,
        interval=interval,
        by_weekday=weekdays,
        monthly_position=position,
        end=end,
    )
