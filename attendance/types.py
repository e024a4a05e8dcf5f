"""
Data types and constants for the attendance session scheduler.

This module contains:
- The RecurrenceRule value object evaluated by the occurrence engine
- DTOs (Data Transfer Objects) for service layer operations
- Constants used across the application
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


# Ten years of days. Open-ended occurrence walks stop here and return what
# they found so far.
MAX_SCAN_DAYS = 366 * 10

DEFAULT_SESSION_COUNT = 4
DEFAULT_SESSION_HOURS = 2

SINGLE_CONFLICT_PREFIX = 'Conflicting session exists on the same date/time:'
BULK_CONFLICT_PREFIX = 'Conflicting sessions detected on the same date/time:'
SINGLE_CONFLICT_SEPARATOR = ', '
BULK_CONFLICT_SEPARATOR = ' | '

NAME_SEPARATOR = ' – '

DEFAULT_MARKING_MODES = {
    'email': True,
    'phone': True,
    'membership_id': True,
    'manual': True,
    'public_link': False,
}

WEEKDAY_CODES = ['MO', 'TU', 'WE', 'TH', 'FR', 'SA', 'SU']

WEEKDAY_NAMES = [
    'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday',
]


class Frequency(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    YEARLY = 'yearly'


PERIOD_FREQUENCIES = (Frequency.MONTHLY, Frequency.YEARLY)


@dataclass(frozen=True)
class RecurrenceRule:
    """
    A repeating pattern anchored on ``start_reference``.

    Weekdays use Python numbering (0=Monday, 6=Sunday). ``by_weekday=None``
    repeats on the weekday of ``start_reference``; an empty set never matches.
    ``until`` is inclusive and ``count`` limits the number of occurrences
    counted from ``start_reference``.

    Monthly and yearly rules repeat on the day of ``start_reference`` unless
    ``by_month_day`` (negative counts from the month end) or
    ``by_nth_weekday`` say otherwise. ``by_nth_weekday`` holds
    ``(weekday, n)`` pairs: ``(6, 1)`` is the first Sunday of the period,
    ``(4, -1)`` the last Friday and ``(6, 0)`` every Sunday. Yearly rules
    count ``n`` within the year, or within the month when ``by_month`` is set.
    """
    frequency: Frequency
    start_reference: date
    interval: int = 1
    by_weekday: Optional[FrozenSet[int]] = None
    by_month_day: Optional[int] = None
    until: Optional[date] = None
    count: Optional[int] = None
    by_month: Optional[FrozenSet[int]] = None
    by_nth_weekday: Optional[FrozenSet[Tuple[int, int]]] = None
    week_start: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'frequency', Frequency(self.frequency))

        if isinstance(self.start_reference, datetime):
            object.__setattr__(self, 'start_reference', self.start_reference.date())
        if not isinstance(self.start_reference, date):
            raise ValueError("Start reference must be a valid date")
        if isinstance(self.until, datetime):
            object.__setattr__(self, 'until', self.until.date())

        if not isinstance(self.interval, int) or self.interval < 1:
            raise ValueError("Interval must be a positive integer")

        if self.by_weekday is not None:
            if self.frequency != Frequency.WEEKLY:
                raise ValueError("Weekday constraints require weekly frequency")
            weekdays = frozenset(self.by_weekday)
            if any(not 0 <= day <= 6 for day in weekdays):
                raise ValueError("Weekday must be between 0 (Monday) and 6 (Sunday)")
            object.__setattr__(self, 'by_weekday', weekdays)

        if self.by_month_day is not None:
            if self.frequency not in PERIOD_FREQUENCIES:
                raise ValueError("Day-of-month constraints require monthly or yearly frequency")
            if self.by_month_day == 0 or not -31 <= self.by_month_day <= 31:
                raise ValueError("Day of month must be between 1 and 31 (or -31 and -1)")

        if self.by_month is not None:
            if self.frequency != Frequency.YEARLY:
                raise ValueError("Month constraints require yearly frequency")
            months = frozenset(self.by_month)
            if not months or any(not 1 <= month <= 12 for month in months):
                raise ValueError("Month must be between 1 and 12")
            object.__setattr__(self, 'by_month', months)

        if self.by_nth_weekday is not None:
            if self.frequency not in PERIOD_FREQUENCIES:
                raise ValueError("Ordinal weekday constraints require monthly or yearly frequency")
            pairs = frozenset((day, n) for day, n in self.by_nth_weekday)
            if not pairs:
                raise ValueError("Ordinal weekday constraints must name at least one weekday")
            limit = 53 if self.frequency == Frequency.YEARLY and not self.by_month else 5
            for day, n in pairs:
                if not 0 <= day <= 6:
                    raise ValueError("Weekday must be between 0 (Monday) and 6 (Sunday)")
                if abs(n) > limit:
                    raise ValueError(f"Weekday position must be between -{limit} and {limit}")
            object.__setattr__(self, 'by_nth_weekday', pairs)

        if not 0 <= self.week_start <= 6:
            raise ValueError("Week start must be between 0 (Monday) and 6 (Sunday)")

        if self.count is not None and self.count < 1:
            raise ValueError("Count must be a positive integer")

    @property
    def weekdays(self) -> FrozenSet[int]:
        """Weekdays a weekly rule repeats on."""
        if self.by_weekday is None:
            return frozenset([self.start_reference.weekday()])
        return self.by_weekday

    @property
    def month_day(self) -> Optional[int]:
        """
        Day of month a monthly or yearly rule repeats on.

        None when only weekday constraints pick the day.
        """
        if self.by_month_day is not None:
            return self.by_month_day
        if self.by_nth_weekday:
            return None
        return self.start_reference.day

    @property
    def months(self) -> Optional[FrozenSet[int]]:
        """Months a yearly rule repeats in; None means every month."""
        if self.by_month is not None:
            return self.by_month
        if self.by_month_day is not None or self.by_nth_weekday:
            return None
        return frozenset([self.start_reference.month])


@dataclass(frozen=True)
class OccasionInfo:
    """Read-only view of an occasion; ``rule`` is None for one-off occasions."""
    id: int
    name: str
    rule: Optional[RecurrenceRule] = None

    @property
    def is_recurring(self) -> bool:
        return self.rule is not None


@dataclass
class OccasionUpdateData:
    """DTO for occasion update operations."""
    name: Optional[str] = None
    description: Optional[str] = None
    recurrence_rule: Optional[str] = None
    recurrence_start: Optional[date] = None
    default_duration_minutes: Optional[int] = None
    is_active: Optional[bool] = None


@dataclass
class SessionUpdateData:
    """DTO for session update operations."""
    name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_open: Optional[bool] = None
    allow_public_marking: Optional[bool] = None


@dataclass
class Location:
    lat: float
    lng: float
    radius: Optional[float] = None

    def to_dict(self) -> dict:
        data = {'lat': self.lat, 'lng': self.lng}
        if self.radius is not None:
            data['radius'] = self.radius
        return data


@dataclass
class SessionSettings:
    """Session-wide settings shared by every draft of one generation run."""
    is_open: bool = True
    allow_public_marking: bool = False
    proximity_required: bool = False
    location: Optional[Location] = None
    allowed_tags: List[str] = field(default_factory=list)
    allowed_groups: List[str] = field(default_factory=list)
    allowed_members: List[str] = field(default_factory=list)
    marking_modes: dict = field(default_factory=lambda: dict(DEFAULT_MARKING_MODES))
