"""
Occurrence enumeration for recurrence rules.

Dates come from ``dateutil.rrule`` driven at midnight, then read back as
civil dates. Every generator here is lazy, restartable and side-effect
free; cancellations are applied by callers.

Rules without a COUNT are rebased onto a cadence-aligned start close to the
query window, so a window years after the anchor does not walk the whole
history. Series that would run past year 9999 stop there.
"""

from collections import deque
from collections.abc import Iterator
from dataclasses import replace
from datetime import date, datetime, time, timedelta

from dateutil import rrule as rr

from app.features.events.domain.recurrence import (
    AfterCount,
    Frequency,
    Never,
    OnDate,
    RecurrenceRule,
)

DEFAULT_HORIZON_DAYS = 365

_FREQUENCIES = {
    Frequency.DAILY: rr.DAILY,
    Frequency.WEEKLY: rr.WEEKLY,
    Frequency.MONTHLY: rr.MONTHLY,
}
_WEEKDAYS = (rr.MO, rr.TU, rr.WE, rr.TH, rr.FR, rr.SA, rr.SU)


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def shift_capped(day: date, days: int) -> date:
    """``day + days``, pinned to date.max / date.min instead of overflowing."""
    try:
        return day + timedelta(days=days)
    except OverflowError:
        return date.max if days > 0 else date.min


def _rebased_start(rule: RecurrenceRule, query_from: date) -> date:
    """
    Latest cadence-aligned start on or before ``query_from``.

    The returned date opens a cycle of the rule (a day, a week starting
    Monday, a month starting on the 1st) counted from the anchor, so
    expanding from it yields the same dates as expanding from the anchor.
    Counted rules always start at the anchor.
    """
    anchor = rule.anchor_date
    if isinstance(rule.end, AfterCount) or query_from <= anchor:
        return anchor

    if rule.frequency is Frequency.DAILY:
        steps = (query_from - anchor).days // rule.interval
        return anchor + timedelta(days=steps * rule.interval)

    if rule.frequency is Frequency.WEEKLY:
        week_zero = anchor - timedelta(days=anchor.weekday())
        cycles = (query_from - week_zero).days // (7 * rule.interval)
        if cycles == 0:
            return anchor
        return week_zero + timedelta(days=cycles * 7 * rule.interval)

    months_ahead = (query_from.year - anchor.year) * 12 + (query_from.month - anchor.month)
    steps = months_ahead // rule.interval
    if steps == 0:
        return anchor
    total = anchor.year * 12 + (anchor.month - 1) + steps * rule.interval
    return date(total // 12, total % 12 + 1, 1)


def _rrule(rule: RecurrenceRule, start: date) -> rr.rrule:
    kwargs = {
        "dtstart": _midnight(start),
        "interval": rule.interval,
        "wkst": rr.MO,
        "cache": False,
    }
    if rule.frequency is Frequency.WEEKLY:
        kwargs["byweekday"] = [_WEEKDAYS[day] for day in rule.weekdays]
    elif rule.frequency is Frequency.MONTHLY:
        position = rule.monthly_position
        if position is not None:
            kwargs["byweekday"] = _WEEKDAYS[position.weekday](position.ordinal)
        else:
            # Months without the anchor's day are skipped, not clamped.
            kwargs["bymonthday"] = rule.anchor_date.day

    if isinstance(rule.end, OnDate):
        kwargs["until"] = _midnight(rule.end.until)
    elif isinstance(rule.end, AfterCount):
        kwargs["count"] = rule.end.count

    return rr.rrule(_FREQUENCIES[rule.frequency], **kwargs)


def _expand(rule: RecurrenceRule, query_from: date, query_to: date | None) -> Iterator[date]:
    start = _rebased_start(rule, query_from)
    for moment in _rrule(rule, start).xafter(_midnight(query_from), inc=True):
        day = moment.date()
        if query_to is not None and day >= query_to:
            return
        yield day


def occurrences(rule: RecurrenceRule, query_from: date, query_to: date | None) -> Iterator[date]:
    """
    Yield every occurrence of ``rule`` in the half-open window [query_from, query_to).

    ``query_to=None`` reads as "no upper bound" and is only accepted for rules
    that end by date or count.

    Raises:
        ValueError: for an unbounded window over a never-ending rule
    """
    if query_to is None and not rule.is_bounded:
        raise ValueError("An open-ended window requires a rule with an end date or count")
    return _expand(rule, query_from, query_to)


def next_occurrence(rule: RecurrenceRule, after: date) -> date | None:
    """First occurrence strictly after ``after``."""
    if after >= date.max:
        return None
    return next(_expand(rule, after + timedelta(days=1), None), None)


def _cycle_days(rule: RecurrenceRule) -> int:
    if rule.frequency is Frequency.DAILY:
        return rule.interval
    if rule.frequency is Frequency.WEEKLY:
        return 7 * rule.interval
    return 31 * rule.interval


def last_occurrence(rule: RecurrenceRule) -> date | None:
    """Final occurrence of a bounded rule; None when the rule never ends."""
    if isinstance(rule.end, AfterCount):
        tail = deque(_rrule(rule, rule.anchor_date), maxlen=1)
        return tail[0].date() if tail else None
    if not isinstance(rule.end, OnDate):
        return None

    # Look back from UNTIL one cycle at a time, widening until a date turns
    # up or the window reaches the anchor.
    until = rule.end.until
    lookback = _cycle_days(rule)
    while True:
        if lookback >= (until - rule.anchor_date).days:
            start = rule.anchor_date
        else:
            start = _rebased_start(rule, until - timedelta(days=lookback))
        found = _rrule(rule, start).before(_midnight(until), inc=True)
        if found is not None or start == rule.anchor_date:
            return found.date() if found is not None else None
        lookback *= 2


def effective_end_date(rule: RecurrenceRule, horizon_days: int = DEFAULT_HORIZON_DAYS) -> date:
    """
    Date after which the rule produces nothing, for cheap range pre-filters.

    Open-ended rules are capped at ``horizon_days`` past the anchor.
    """
    if isinstance(rule.end, OnDate):
        return rule.end.until
    if isinstance(rule.end, AfterCount):
        return last_occurrence(rule) or rule.anchor_date
    return shift_capped(rule.anchor_date, horizon_days)


def is_occurrence(rule: RecurrenceRule, day: date) -> bool:
    return next(_expand(rule, day, None), None) == day


def split_series(
    rule: RecurrenceRule, split_date: date
) -> tuple[RecurrenceRule, RecurrenceRule | None]:
    """
    Cut a series in two at ``split_date``.

    The head keeps every occurrence before ``split_date``; the tail starts
    at the first occurrence on or after it and carries whatever remains of
    the end condition. The tail is None when nothing remains.
    """
    earlier = sum(1 for _ in _expand(rule, rule.anchor_date, split_date))
    if earlier == 0:
        raise ValueError("Split date must fall after the first occurrence")

    if isinstance(rule.end, AfterCount):
        head = replace(rule, end=AfterCount(earlier))
    elif isinstance(rule.end, OnDate):
        head = replace(rule, end=OnDate(min(rule.end.until, split_date - timedelta(days=1))))
    else:
        head = replace(rule, end=OnDate(split_date - timedelta(days=1)))

    tail_anchor = next(_expand(rule, split_date, None), None)
    if tail_anchor is None:
        return head, None

    if isinstance(rule.end, AfterCount):
        tail_end = AfterCount(rule.end.count - earlier)
    elif isinstance(rule.end, OnDate):
        tail_end = rule.end
    else:
        tail_end = Never()

    return head, replace(rule, anchor_date=tail_anchor, end=tail_end)
