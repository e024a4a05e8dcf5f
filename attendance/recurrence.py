"""
Occurrence engine for recurring occasions.

Everything here is a pure function of its arguments: no database access and
no clock reads. Callers pass the reference dates in.

The generator and the matcher share one predicate, so a date is produced for
a range exactly when ``does_date_match`` accepts it. RRULE text is read with
dateutil's ``rrulestr`` and turned into a ``RecurrenceRule``.
"""

import logging
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from typing import Iterable, Iterator, List, Optional, Union

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, FREQNAMES, MONTHLY, WEEKLY, YEARLY, rrule, rrulestr

from .types import (
    MAX_SCAN_DAYS,
    PERIOD_FREQUENCIES,
    WEEKDAY_CODES,
    WEEKDAY_NAMES,
    Frequency,
    RecurrenceRule,
)

logger = logging.getLogger(__name__)

RRULE_FREQUENCIES = {
    'DAILY': Frequency.DAILY,
    'WEEKLY': Frequency.WEEKLY,
    'MONTHLY': Frequency.MONTHLY,
    'YEARLY': Frequency.YEARLY,
}

DATEUTIL_FREQUENCIES = {
    DAILY: Frequency.DAILY,
    WEEKLY: Frequency.WEEKLY,
    MONTHLY: Frequency.MONTHLY,
    YEARLY: Frequency.YEARLY,
}

# rrule parts that select times or sets of days the engine does not model
UNSUPPORTED_PARTS = ('bysetpos', 'byyearday', 'byweekno', 'byeaster')
TIME_PARTS = ('byhour', 'byminute', 'bysecond')

# Placeholder DTSTART handed to rrulestr when the caller has no anchor
NO_START = datetime.combine(date.min, time.min)

DateLike = Union[date, datetime]


def generate_occurrences(
    rule: RecurrenceRule,
    range_start: DateLike,
    range_end: DateLike
) -> List[date]:
    """
    Generate every occurrence of ``rule`` inside a date range.

    Args:
        rule: RecurrenceRule to evaluate
        range_start: First date of the range (inclusive)
        range_end: Last date of the range (inclusive)

    Returns:
        Ascending list of dates; empty when the range is inverted
    """
    first = max(_as_date(range_start), rule.start_reference)
    last = _upper_bound(rule, _as_date(range_end))

    if first > last:
        return []

    return list(_iter_matches(rule, first, last))


def generate_next_occurrences(
    rule: RecurrenceRule,
    count: int,
    from_date: DateLike
) -> List[date]:
    """
    Find the first ``count`` occurrences on or after ``from_date``.

    The walk stops after MAX_SCAN_DAYS days. A rule that runs out of matches
    (its own bounds, or a rule that never matches) yields a shorter list.

    Args:
        rule: RecurrenceRule to evaluate
        count: Number of occurrences wanted
        from_date: Earliest date that may be returned

    Returns:
        Ascending list of at most ``count`` dates
    """
    if count <= 0:
        return []

    first = max(_as_date(from_date), rule.start_reference)
    ceiling = first + timedelta(days=MAX_SCAN_DAYS)
    last = _upper_bound(rule, ceiling)

    results = []
    for occurrence in _iter_matches(rule, first, last):
        results.append(occurrence)
        if len(results) == count:
            return results

    if last == ceiling:
        logger.warning(
            "Stopped occurrence scan at %s with %d of %d occurrences found",
            ceiling, len(results), count
        )
    return results


def does_date_match(rule: RecurrenceRule, candidate: DateLike) -> bool:
    """
    Check whether ``candidate`` is an occurrence of ``rule``.

    Dates before the rule's start reference never match.
    """
    candidate = _as_date(candidate)

    if not _matches_pattern(rule, candidate):
        return False

    limit = _count_limit(rule)
    return limit is None or candidate <= limit


def _as_date(value: DateLike) -> date:
    """Reduce datetimes to their calendar date."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _iter_matches(rule: RecurrenceRule, first: date, last: date) -> Iterator[date]:
    """Step day by day through [first, last] and yield matching dates."""
    current = first
    while current <= last:
        if _matches_pattern(rule, current):
            yield current
        current += timedelta(days=1)


def _matches_pattern(rule: RecurrenceRule, candidate: date) -> bool:
    """Frequency, phase and bound checks, excluding the count limit."""
    start = rule.start_reference

    if candidate < start:
        return False

    if rule.until and candidate > rule.until:
        return False

    if rule.frequency == Frequency.DAILY:
        return (candidate - start).days % rule.interval == 0

    if rule.frequency == Frequency.WEEKLY:
        if candidate.weekday() not in rule.weekdays:
            return False
        return _weeks_between(start, candidate, rule.week_start) % rule.interval == 0

    if rule.frequency == Frequency.MONTHLY:
        months = (candidate.year - start.year) * 12 + candidate.month - start.month
        if months % rule.interval:
            return False
    else:
        if (candidate.year - start.year) % rule.interval:
            return False
        months = rule.months
        if months is not None and candidate.month not in months:
            return False

    return _matches_day(rule, candidate)


def _weeks_between(start: date, candidate: date, week_start: int = 0) -> int:
    """Whole weeks between the weeks (starting on ``week_start``) of two dates."""
    start_week = start - timedelta(days=(start.weekday() - week_start) % 7)
    candidate_week = candidate - timedelta(days=(candidate.weekday() - week_start) % 7)
    return (candidate_week - start_week).days // 7


def _matches_day(rule: RecurrenceRule, candidate: date) -> bool:
    month_day = rule.month_day
    if month_day is not None:
        if month_day < 0:
            month_day += _month_length(candidate) + 1
        if candidate.day != month_day:
            return False

    if rule.by_nth_weekday:
        return _matches_nth_weekday(rule, candidate)
    return True


def _matches_nth_weekday(rule: RecurrenceRule, candidate: date) -> bool:
    """Position of ``candidate`` among its weekday in the month or year."""
    wanted = {n for day, n in rule.by_nth_weekday if day == candidate.weekday()}
    if not wanted:
        return False
    if 0 in wanted:
        return True

    if rule.frequency == Frequency.MONTHLY or rule.by_month:
        position, length = candidate.day, _month_length(candidate)
    else:
        position = candidate.timetuple().tm_yday
        length = date(candidate.year, 12, 31).timetuple().tm_yday

    from_start = (position - 1) // 7 + 1
    from_end = -((length - position) // 7 + 1)
    return from_start in wanted or from_end in wanted


def _month_length(day: date) -> int:
    return (day + relativedelta(day=31)).day


@lru_cache(maxsize=256)
def _count_limit(rule: RecurrenceRule) -> Optional[date]:
    """
    Date of the ``rule.count``-th occurrence.

    Returns None for rules without a count. Counting runs from
    ``start_reference`` for as long as it takes; it only gives up when
    MAX_SCAN_DAYS pass without a single match, and then the last occurrence
    found is the limit.
    """
    if rule.count is None:
        return None

    found = 0
    last_found = rule.start_reference - timedelta(days=1)
    current = rule.start_reference
    give_up = current + timedelta(days=MAX_SCAN_DAYS)

    while current <= give_up:
        if rule.until and current > rule.until:
            break
        if _matches_pattern(rule, current):
            found += 1
            last_found = current
            if found == rule.count:
                break
            give_up = current + timedelta(days=MAX_SCAN_DAYS)
        current += timedelta(days=1)

    return last_found


def _upper_bound(rule: RecurrenceRule, end: date) -> date:
    """Clamp ``end`` to the rule's own until/count bounds."""
    bounds = [end]
    if rule.until:
        bounds.append(rule.until)
    limit = _count_limit(rule)
    if limit:
        bounds.append(limit)
    return min(bounds)


def parse_rrule(text: str, start_reference: Optional[DateLike] = None) -> RecurrenceRule:
    """
    Parse RRULE text such as ``FREQ=WEEKLY;INTERVAL=2;BYDAY=SU,WE``.

    A DTSTART line in the text takes precedence over ``start_reference``.
    Daily rules limited by BYDAY are read as the equivalent weekly rule.

    Raises:
        ValueError: If the text is empty, is not valid RRULE syntax, or uses
            a frequency or part the engine does not support
    """
    if not text or not text.strip():
        raise ValueError("Recurrence rule is empty")

    text = text.strip()
    if start_reference is None:
        dtstart = NO_START
    else:
        dtstart = datetime.combine(_as_date(start_reference), time.min)

    try:
        parsed = rrulestr(text, dtstart=dtstart, ignoretz=True)
    except (ValueError, TypeError, KeyError, IndexError, OverflowError) as exc:
        raise ValueError(f"Invalid recurrence rule: {text}") from exc

    if not isinstance(parsed, rrule):
        raise ValueError("Recurrence rule must be a single RRULE without extra dates")

    if start_reference is None and parsed._dtstart == NO_START:
        raise ValueError("Recurrence rule needs a start date")

    return _from_dateutil(parsed)


def _from_dateutil(parsed: rrule) -> RecurrenceRule:
    """Read the parts of a parsed dateutil rule that were given explicitly."""
    frequency = DATEUTIL_FREQUENCIES.get(parsed._freq)
    if frequency is None:
        raise ValueError(f"Unsupported recurrence frequency: {FREQNAMES[parsed._freq]}")

    explicit = parsed._original_rule
    unsupported = [name for name in UNSUPPORTED_PARTS if getattr(parsed, '_' + name)]
    unsupported += [name for name in TIME_PARTS if explicit.get(name)]
    if unsupported:
        raise ValueError(
            "Unsupported recurrence parts: " + ', '.join(name.upper() for name in unsupported)
        )

    by_weekday = None
    by_nth_weekday = None
    if explicit.get('byweekday'):
        plain = parsed._byweekday or ()
        if frequency in PERIOD_FREQUENCIES:
            by_nth_weekday = frozenset([(day, 0) for day in plain] + list(parsed._bynweekday or ()))
        elif frequency == Frequency.WEEKLY or parsed._interval == 1:
            # every day on these weekdays is the same set of dates as weekly
            frequency = Frequency.WEEKLY
            by_weekday = frozenset(plain)
        else:
            raise ValueError("BYDAY on a daily rule cannot be combined with INTERVAL")

    by_month_day = None
    if explicit.get('bymonthday'):
        month_days = parsed._bymonthday + parsed._bynmonthday
        if len(month_days) > 1:
            raise ValueError("Only one BYMONTHDAY value is supported")
        by_month_day = month_days[0]

    by_month = None
    if explicit.get('bymonth'):
        by_month = frozenset(parsed._bymonth)

    return RecurrenceRule(
        frequency=frequency,
        start_reference=parsed._dtstart.date(),
        interval=parsed._interval,
        by_weekday=by_weekday,
        by_month_day=by_month_day,
        until=parsed._until.date() if parsed._until else None,
        count=parsed._count,
        by_month=by_month,
        by_nth_weekday=by_nth_weekday,
        week_start=parsed._wkst,
    )


def format_rrule(rule: RecurrenceRule, include_start: bool = False) -> str:
    """Render a rule back to RRULE text."""
    frequency = next(key for key, value in RRULE_FREQUENCIES.items() if value == rule.frequency)
    chunks = [f'FREQ={frequency}']

    if rule.interval != 1:
        chunks.append(f'INTERVAL={rule.interval}')
    if rule.week_start:
        chunks.append(f'WKST={WEEKDAY_CODES[rule.week_start]}')
    if rule.by_weekday:
        chunks.append('BYDAY=' + ','.join(WEEKDAY_CODES[day] for day in _sunday_first(rule.by_weekday)))
    if rule.by_nth_weekday:
        ordered = sorted(rule.by_nth_weekday, key=lambda pair: ((pair[0] + 1) % 7, pair[1]))
        chunks.append('BYDAY=' + ','.join(
            f'{n}{WEEKDAY_CODES[day]}' if n else WEEKDAY_CODES[day] for day, n in ordered
        ))
    if rule.by_month:
        chunks.append('BYMONTH=' + ','.join(str(month) for month in sorted(rule.by_month)))
    if rule.by_month_day is not None:
        chunks.append(f'BYMONTHDAY={rule.by_month_day}')
    if rule.until:
        chunks.append(f'UNTIL={rule.until:%Y%m%d}')
    if rule.count:
        chunks.append(f'COUNT={rule.count}')

    text = ';'.join(chunks)
    if include_start:
        return f'DTSTART:{rule.start_reference:%Y%m%d}\nRRULE:{text}'
    return text


def _sunday_first(days: Iterable[int]) -> List[int]:
    # the occasion form lists weekdays from Sunday
    return sorted(days, key=lambda day: (day + 1) % 7)


def format_recurrence_rule(value: Union[str, RecurrenceRule, None], short: bool = False) -> str:
    """
    Describe a recurrence rule in plain words, e.g. "Weekly on Sundays".

    Text that cannot be interpreted is returned unchanged.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return 'No recurrence'

    rule = value
    if isinstance(value, str):
        try:
            # the anchor does not show up in the description
            rule = parse_rrule(value, start_reference=date.min)
        except ValueError:
            return value

    interval = rule.interval

    if rule.frequency == Frequency.DAILY:
        return 'Daily' if interval == 1 else f'Every {interval} days'

    if rule.frequency == Frequency.WEEKLY:
        text = 'Weekly' if interval == 1 else f'Every {interval} weeks'
        if not rule.by_weekday:
            return text

        names = [_weekday_label(day, short) for day in _sunday_first(rule.by_weekday)]
        if len(names) == 1:
            return f'{text} on {names[0]}' if short else f'{text} on {names[0]}s'
        if len(names) == 7:
            return f'{text} (all days)'
        return f'{text} on {", ".join(names)}'

    if rule.frequency == Frequency.MONTHLY:
        return 'Monthly' if interval == 1 else f'Every {interval} months'

    return 'Yearly' if interval == 1 else f'Every {interval} years'


def get_recurrence_badge_text(value: Union[str, RecurrenceRule, None]) -> str:
    """Compact rule description for badges ("2w on Sun")."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return ''

    formatted = format_recurrence_rule(value, short=True)
    for long_form, short_form in (
        ('Every ', ''),
        (' days', 'd'),
        (' weeks', 'w'),
        (' months', 'm'),
        (' years', 'y'),
    ):
        formatted = formatted.replace(long_form, short_form)
    return formatted


def _weekday_label(day: int, short: bool) -> str:
    name = WEEKDAY_NAMES[day]
    return name[:3] if short else name
