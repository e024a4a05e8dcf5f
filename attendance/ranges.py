"""
Bulk range resolution.

Maps the bulk duration presets offered when creating sessions to either a
number of upcoming sessions or a calendar range. The reference day is always
passed in; nothing here reads the clock or evaluates recurrence rules.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from dateutil.relativedelta import relativedelta


class BulkDurationOption(str, Enum):
    NEXT_1_SESSION = 'next_1_session'
    NEXT_2_SESSIONS = 'next_2_sessions'
    NEXT_3_SESSIONS = 'next_3_sessions'
    NEXT_4_SESSIONS = 'next_4_sessions'
    NEXT_5_SESSIONS = 'next_5_sessions'
    NEXT_6_SESSIONS = 'next_6_sessions'
    NEXT_7_SESSIONS = 'next_7_sessions'
    NEXT_8_SESSIONS = 'next_8_sessions'
    CURRENT_MONTH = 'current_month'
    NEXT_2_MONTHS = 'next_2_months'
    NEXT_3_MONTHS = 'next_3_months'
    NEXT_4_MONTHS = 'next_4_months'
    NEXT_5_MONTHS = 'next_5_months'
    NEXT_6_MONTHS = 'next_6_months'
    CUSTOM_RANGE = 'custom_range'


SESSION_COUNT_PRESETS = {
    BulkDurationOption.NEXT_1_SESSION: 1,
    BulkDurationOption.NEXT_2_SESSIONS: 2,
    BulkDurationOption.NEXT_3_SESSIONS: 3,
    BulkDurationOption.NEXT_4_SESSIONS: 4,
    BulkDurationOption.NEXT_5_SESSIONS: 5,
    BulkDurationOption.NEXT_6_SESSIONS: 6,
    BulkDurationOption.NEXT_7_SESSIONS: 7,
    BulkDurationOption.NEXT_8_SESSIONS: 8,
}

# Number of whole months covered after the current one; 0 means the current month.
MONTH_RANGE_PRESETS = {
    BulkDurationOption.CURRENT_MONTH: 0,
    BulkDurationOption.NEXT_2_MONTHS: 2,
    BulkDurationOption.NEXT_3_MONTHS: 3,
    BulkDurationOption.NEXT_4_MONTHS: 4,
    BulkDurationOption.NEXT_5_MONTHS: 5,
    BulkDurationOption.NEXT_6_MONTHS: 6,
}


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


@dataclass(frozen=True)
class CountRequest:
    """Generate the next ``count`` sessions."""
    count: int


@dataclass(frozen=True)
class RangeRequest:
    """Generate every session inside [start, end]."""
    start: date
    end: date


def get_session_count_for_option(option: Union[BulkDurationOption, str]) -> int:
    """Session count of a ``next_N_sessions`` preset, 0 for every other option."""
    return SESSION_COUNT_PRESETS.get(BulkDurationOption(option), 0)


def get_range_for_option(option: Union[BulkDurationOption, str], today: Union[date, datetime]) -> DateRange:
    """
    Resolve a calendar preset relative to ``today``.

    ``current_month`` covers today's month; ``next_K_months`` runs from the
    first day of next month to the last day of the K-th following month.

    Raises:
        ValueError: For session-count presets and ``custom_range``
    """
    option = BulkDurationOption(option)
    if option not in MONTH_RANGE_PRESETS:
        raise ValueError(f"Option {option.value} does not describe a calendar range")

    if isinstance(today, datetime):
        today = today.date()

    month_start = today.replace(day=1)
    months = MONTH_RANGE_PRESETS[option]

    if months == 0:
        return DateRange(start=month_start, end=_last_day_of_month(month_start))

    start = month_start + relativedelta(months=1)
    end = _last_day_of_month(month_start + relativedelta(months=months))
    return DateRange(start=start, end=end)


def resolve_bulk_option(
    option: Union[BulkDurationOption, str],
    today: Union[date, datetime],
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None
) -> Union[CountRequest, RangeRequest]:
    """
    Turn a bulk option into a generation request.

    Raises:
        ValueError: If ``custom_range`` is missing an explicit start or end
    """
    option = BulkDurationOption(option)

    count = get_session_count_for_option(option)
    if count:
        return CountRequest(count=count)

    if option == BulkDurationOption.CUSTOM_RANGE:
        if custom_start is None or custom_end is None:
            raise ValueError("Custom range requires a start and end date")
        return RangeRequest(start=custom_start, end=custom_end)

    date_range = get_range_for_option(option, today)
    return RangeRequest(start=date_range.start, end=date_range.end)


def _last_day_of_month(day: date) -> date:
    return day.replace(day=1) + relativedelta(months=1, days=-1)
