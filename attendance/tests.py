"""
Tests for the attendance session scheduler.

Tests cover:
- Occurrence engine (generation, date matching, RRULE text)
- Bulk range resolution
- Draft building and editing
- Conflict message parsing
- Session creation wizard
- Models, service layer and conflict detection
- API endpoints
- Management commands
"""

from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from io import StringIO
from types import SimpleNamespace

from dateutil.rrule import rrulestr
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .conflicts import (
    BULK,
    OTHER,
    SINGLE,
    ConflictErrorInfo,
    ConflictReport,
    classify_failure,
    format_conflict_message,
    parse_conflict_error,
)
from .drafts import (
    DraftSet,
    SessionTemplate,
    build_draft,
    build_drafts,
    compute_session_name,
    format_date_label,
    format_friendly_date,
)
from .models import AttendanceSession, Occasion
from .ranges import (
    BulkDurationOption,
    CountRequest,
    DateRange,
    RangeRequest,
    get_range_for_option,
    get_session_count_for_option,
    resolve_bulk_option,
)
from .recurrence import (
    does_date_match,
    format_recurrence_rule,
    format_rrule,
    generate_next_occurrences,
    generate_occurrences,
    get_recurrence_badge_text,
    parse_rrule,
)
from .types import (
    DEFAULT_MARKING_MODES,
    Frequency,
    Location,
    OccasionInfo,
    OccasionUpdateData,
    RecurrenceRule,
    SessionSettings,
    SessionUpdateData,
)
from .wizard import (
    DATE_NOT_IN_PATTERN,
    MISSING_CUSTOM_RANGE,
    MISSING_DATE,
    MISSING_MANUAL_DATES,
    MISSING_OCCASION,
    NO_DRAFTS,
    NO_MATCHING_DATES,
    NO_VALID_DATES,
    SessionCreationWizard,
)

SUNDAY = 6


def sunday_rule(**kwargs):
    """Weekly on Sundays from Sunday 2024-01-07."""
    return RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_reference=date(2024, 1, 7),
        by_weekday=frozenset([SUNDAY]),
        **kwargs
    )


def aware(*args):
    return timezone.make_aware(datetime(*args))


class OccurrenceGeneratorTests(SimpleTestCase):
    """Test generate_occurrences and generate_next_occurrences."""

    def test_weekly_range(self):
        """Every Sunday of January 2024."""
        dates = generate_occurrences(sunday_rule(), date(2024, 1, 1), date(2024, 1, 31))
        self.assertEqual(dates, [
            date(2024, 1, 7),
            date(2024, 1, 14),
            date(2024, 1, 21),
            date(2024, 1, 28),
        ])

    def test_next_occurrences_from_midweek(self):
        dates = generate_next_occurrences(sunday_rule(), 3, date(2024, 1, 10))
        self.assertEqual(dates, [date(2024, 1, 14), date(2024, 1, 21), date(2024, 1, 28)])

    def test_next_occurrences_include_from_date(self):
        dates = generate_next_occurrences(sunday_rule(), 1, date(2024, 1, 14))
        self.assertEqual(dates, [date(2024, 1, 14)])

    def test_zero_count(self):
        self.assertEqual(generate_next_occurrences(sunday_rule(), 0, date(2024, 1, 10)), [])

    def test_inverted_range_is_empty(self):
        self.assertEqual(generate_occurrences(sunday_rule(), date(2024, 2, 1), date(2024, 1, 1)), [])

    def test_range_before_start_reference(self):
        self.assertEqual(generate_occurrences(sunday_rule(), date(2023, 12, 1), date(2023, 12, 31)), [])

    def test_biweekly_phase(self):
        """Interval 2 skips every other Monday-started week."""
        rule = sunday_rule(interval=2)
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 2, 10))
        self.assertEqual(dates, [date(2024, 1, 7), date(2024, 1, 21), date(2024, 2, 4)])

    def test_multiple_weekdays(self):
        rule = RecurrenceRule(
            frequency=Frequency.WEEKLY,
            start_reference=date(2024, 1, 1),
            by_weekday=frozenset([0, 2]),  # Monday, Wednesday
        )
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 1, 10))
        self.assertEqual(dates, [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)])

    def test_weekly_defaults_to_start_weekday(self):
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, start_reference=date(2024, 1, 3))
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 1, 20))
        self.assertEqual(dates, [date(2024, 1, 3), date(2024, 1, 10), date(2024, 1, 17)])

    def test_daily_interval(self):
        rule = RecurrenceRule(frequency=Frequency.DAILY, start_reference=date(2024, 1, 1), interval=3)
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 1, 10))
        self.assertEqual(dates, [date(2024, 1, 1), date(2024, 1, 4), date(2024, 1, 7), date(2024, 1, 10)])

    def test_monthly_skips_short_months(self):
        rule = RecurrenceRule(frequency=Frequency.MONTHLY, start_reference=date(2024, 1, 31))
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 5, 31))
        self.assertEqual(dates, [date(2024, 1, 31), date(2024, 3, 31), date(2024, 5, 31)])

    def test_monthly_interval_and_day(self):
        rule = RecurrenceRule(
            frequency=Frequency.MONTHLY,
            start_reference=date(2024, 1, 1),
            interval=2,
            by_month_day=15,
        )
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 6, 30))
        self.assertEqual(dates, [date(2024, 1, 15), date(2024, 3, 15), date(2024, 5, 15)])

    def test_until_is_inclusive(self):
        rule = sunday_rule(until=date(2024, 1, 21))
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 2, 29))
        self.assertEqual(dates, [date(2024, 1, 7), date(2024, 1, 14), date(2024, 1, 21)])

    def test_count_limits_occurrences(self):
        rule = sunday_rule(count=2)
        self.assertEqual(
            generate_next_occurrences(rule, 5, date(2024, 1, 1)),
            [date(2024, 1, 7), date(2024, 1, 14)]
        )
        self.assertEqual(
            generate_occurrences(rule, date(2024, 1, 10), date(2024, 3, 1)),
            [date(2024, 1, 14)]
        )

    def test_count_reaches_past_scan_horizon(self):
        """A long COUNT keeps producing dates more than MAX_SCAN_DAYS after the anchor."""
        rule = sunday_rule(count=600)
        from_date = date(2024, 1, 7) + timedelta(weeks=560)
        self.assertEqual(
            generate_next_occurrences(rule, 3, from_date),
            [date(2034, 10, 1), date(2034, 10, 8), date(2034, 10, 15)]
        )
        self.assertEqual(
            generate_next_occurrences(rule, 5, date(2035, 6, 20)),
            [date(2035, 6, 24), date(2035, 7, 1)]
        )

    def test_monthly_first_sunday(self):
        rule = parse_rrule('FREQ=MONTHLY;BYDAY=1SU', start_reference=date(2024, 1, 7))
        self.assertEqual(
            generate_next_occurrences(rule, 4, date(2024, 1, 1)),
            [date(2024, 1, 7), date(2024, 2, 4), date(2024, 3, 3), date(2024, 4, 7)]
        )

    def test_monthly_last_day(self):
        rule = RecurrenceRule(frequency=Frequency.MONTHLY, start_reference=date(2024, 1, 1), by_month_day=-1)
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2024, 4, 30))
        self.assertEqual(dates, [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)])

    def test_yearly_repeats_on_anchor_day(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY, start_reference=date(2024, 1, 7), interval=2)
        self.assertEqual(
            generate_next_occurrences(rule, 3, date(2024, 6, 1)),
            [date(2026, 1, 7), date(2028, 1, 7), date(2030, 1, 7)]
        )

    def test_yearly_leap_day_skips_common_years(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY, start_reference=date(2024, 2, 29))
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2032, 12, 31))
        self.assertEqual(dates, [date(2024, 2, 29), date(2028, 2, 29), date(2032, 2, 29)])

    def test_yearly_last_sunday_of_march(self):
        rule = parse_rrule('FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU', start_reference=date(2024, 1, 1))
        dates = generate_occurrences(rule, date(2024, 1, 1), date(2026, 12, 31))
        self.assertEqual(dates, [date(2024, 3, 31), date(2025, 3, 30), date(2026, 3, 29)])

    def test_agrees_with_dateutil_expansion(self):
        """The same RRULE text expands to the same dates as dateutil's rrule."""
        anchor = datetime(2024, 1, 7)
        window_start, window_end = datetime(2024, 1, 1), datetime(2027, 12, 31)
        for text in [
            'FREQ=WEEKLY;INTERVAL=2;BYDAY=SU,WE',
            'FREQ=WEEKLY;INTERVAL=2;WKST=SU;BYDAY=SU,TU',
            'FREQ=MONTHLY;BYDAY=1SU',
            'FREQ=MONTHLY;INTERVAL=2;BYDAY=-1FR',
            'FREQ=MONTHLY;BYDAY=SU',
            'FREQ=MONTHLY;BYMONTHDAY=-1',
            'FREQ=MONTHLY;BYMONTHDAY=31',
            'FREQ=MONTHLY;BYMONTHDAY=13;BYDAY=FR',
            'FREQ=YEARLY',
            'FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU',
            'FREQ=YEARLY;BYDAY=20MO',
            'FREQ=DAILY;INTERVAL=5;COUNT=40',
            'FREQ=DAILY;BYDAY=MO,WE,FR',
        ]:
            expected = [
                occurrence.date()
                for occurrence in rrulestr(text, dtstart=anchor).between(window_start, window_end, inc=True)
            ]
            rule = parse_rrule(text, start_reference=anchor)
            self.assertEqual(generate_occurrences(rule, window_start, window_end), expected, text)

    def test_rule_without_matches_returns_short_list(self):
        rule = RecurrenceRule(
            frequency=Frequency.WEEKLY,
            start_reference=date(2024, 1, 1),
            by_weekday=frozenset(),
        )
        with self.assertLogs('attendance.recurrence', level='WARNING'):
            self.assertEqual(generate_next_occurrences(rule, 3, date(2024, 1, 1)), [])

    def test_datetime_inputs_use_their_date(self):
        dates = generate_occurrences(
            sunday_rule(),
            datetime(2024, 1, 14, 23, 59),
            datetime(2024, 1, 21, 0, 0),
        )
        self.assertEqual(dates, [date(2024, 1, 14), date(2024, 1, 21)])


class DateMatcherTests(SimpleTestCase):
    """Test does_date_match."""

    def test_weekday_mismatch(self):
        self.assertFalse(does_date_match(sunday_rule(), date(2024, 1, 10)))

    def test_weekday_match(self):
        self.assertTrue(does_date_match(sunday_rule(), date(2024, 1, 14)))

    def test_before_start_reference(self):
        self.assertFalse(does_date_match(sunday_rule(), date(2023, 12, 31)))

    def test_wrong_phase(self):
        self.assertFalse(does_date_match(sunday_rule(interval=2), date(2024, 1, 14)))
        self.assertTrue(does_date_match(sunday_rule(interval=2), date(2024, 1, 21)))

    def test_after_until(self):
        rule = sunday_rule(until=date(2024, 1, 21))
        self.assertTrue(does_date_match(rule, date(2024, 1, 21)))
        self.assertFalse(does_date_match(rule, date(2024, 1, 28)))

    def test_beyond_count(self):
        rule = sunday_rule(count=2)
        self.assertTrue(does_date_match(rule, date(2024, 1, 14)))
        self.assertFalse(does_date_match(rule, date(2024, 1, 21)))

    def test_count_far_from_start_reference(self):
        rule = sunday_rule(count=600)
        self.assertTrue(does_date_match(rule, date(2034, 10, 1)))
        self.assertTrue(does_date_match(rule, date(2035, 7, 1)))
        self.assertFalse(does_date_match(rule, date(2035, 7, 8)))

        last = list(rrulestr(format_rrule(rule, include_start=True)))[-1]
        self.assertEqual(last.date(), date(2035, 7, 1))

    def test_yearly(self):
        rule = RecurrenceRule(frequency=Frequency.YEARLY, start_reference=date(2024, 2, 29))
        self.assertTrue(does_date_match(rule, date(2028, 2, 29)))
        self.assertFalse(does_date_match(rule, date(2025, 2, 28)))
        self.assertFalse(does_date_match(rule, date(2025, 3, 1)))

    def test_nth_weekday(self):
        rule = parse_rrule('FREQ=MONTHLY;BYDAY=1SU', start_reference=date(2024, 1, 7))
        self.assertTrue(does_date_match(rule, date(2024, 2, 4)))
        self.assertFalse(does_date_match(rule, date(2024, 2, 11)))

    def test_agrees_with_generator(self):
        """Every date in a range matches exactly when the generator emits it."""
        rules = [
            sunday_rule(interval=3),
            RecurrenceRule(frequency=Frequency.DAILY, start_reference=date(2024, 1, 5), interval=4, count=20),
            RecurrenceRule(frequency=Frequency.MONTHLY, start_reference=date(2024, 1, 30), until=date(2024, 9, 1)),
            parse_rrule('FREQ=MONTHLY;BYDAY=1SU,-1SU;COUNT=15', start_reference=date(2024, 1, 7)),
            parse_rrule('FREQ=YEARLY;BYMONTH=2,8;BYMONTHDAY=29', start_reference=date(2024, 1, 1)),
        ]
        start, end = date(2024, 1, 1), date(2024, 12, 31)
        for rule in rules:
            generated = set(generate_occurrences(rule, start, end))
            day = start
            while day <= end:
                self.assertEqual(does_date_match(rule, day), day in generated, (rule, day))
                day += timedelta(days=1)


class RecurrenceRuleTests(SimpleTestCase):
    """Test RecurrenceRule validation."""

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValueError):
            sunday_rule(interval=0)

    def test_weekdays_require_weekly(self):
        with self.assertRaises(ValueError):
            RecurrenceRule(frequency=Frequency.DAILY, start_reference=date(2024, 1, 1), by_weekday=frozenset([0]))

    def test_month_day_range(self):
        for month_day in (0, 32, -32):
            with self.assertRaises(ValueError, msg=month_day):
                RecurrenceRule(frequency=Frequency.MONTHLY, start_reference=date(2024, 1, 1), by_month_day=month_day)

    def test_months_require_yearly(self):
        with self.assertRaises(ValueError):
            RecurrenceRule(frequency=Frequency.MONTHLY, start_reference=date(2024, 1, 1), by_month=frozenset([3]))

    def test_nth_weekday_position_range(self):
        with self.assertRaises(ValueError):
            RecurrenceRule(
                frequency=Frequency.MONTHLY,
                start_reference=date(2024, 1, 1),
                by_nth_weekday=frozenset([(SUNDAY, 6)]),
            )
        rule = RecurrenceRule(
            frequency=Frequency.YEARLY,
            start_reference=date(2024, 1, 1),
            by_nth_weekday=[(0, 20)],
        )
        self.assertEqual(rule.by_nth_weekday, frozenset([(0, 20)]))
        self.assertIsNone(rule.month_day)
        self.assertIsNone(rule.months)

    def test_count_must_be_positive(self):
        with self.assertRaises(ValueError):
            sunday_rule(count=0)

    def test_datetime_start_reference(self):
        rule = RecurrenceRule(frequency='daily', start_reference=datetime(2024, 1, 1, 10, 30))
        self.assertEqual(rule.start_reference, date(2024, 1, 1))
        self.assertEqual(rule.frequency, Frequency.DAILY)


class RRuleTextTests(SimpleTestCase):
    """Test RRULE parsing, rendering and descriptions."""

    def test_parse_weekly(self):
        rule = parse_rrule('FREQ=WEEKLY;INTERVAL=2;BYDAY=SU,WE', start_reference=date(2024, 1, 7))
        self.assertEqual(rule.frequency, Frequency.WEEKLY)
        self.assertEqual(rule.interval, 2)
        self.assertEqual(rule.by_weekday, frozenset([2, 6]))
        self.assertEqual(rule.start_reference, date(2024, 1, 7))

    def test_dtstart_wins(self):
        rule = parse_rrule('DTSTART:20240107\nRRULE:FREQ=WEEKLY;BYDAY=SU', start_reference=date(2023, 1, 1))
        self.assertEqual(rule.start_reference, date(2024, 1, 7))

    def test_parse_bounds(self):
        rule = parse_rrule('FREQ=MONTHLY;BYMONTHDAY=15;UNTIL=20241231T235959Z', start_reference=date(2024, 1, 1))
        self.assertEqual(rule.by_month_day, 15)
        self.assertEqual(rule.until, date(2024, 12, 31))
        self.assertIsNone(rule.count)

        rule = parse_rrule('FREQ=MONTHLY;BYMONTHDAY=-1;COUNT=6', start_reference=date(2024, 1, 1))
        self.assertEqual(rule.by_month_day, -1)
        self.assertEqual(rule.count, 6)

    def test_parse_ordinal_weekdays(self):
        rule = parse_rrule('FREQ=MONTHLY;BYDAY=1SU', start_reference=date(2024, 1, 7))
        self.assertEqual(rule.frequency, Frequency.MONTHLY)
        self.assertEqual(rule.by_nth_weekday, frozenset([(SUNDAY, 1)]))
        self.assertIsNone(rule.by_weekday)

        rule = parse_rrule('FREQ=MONTHLY;BYDAY=-1FR,1SU', start_reference=date(2024, 1, 7))
        self.assertEqual(format_rrule(rule), 'FREQ=MONTHLY;BYDAY=1SU,-1FR')

    def test_parse_yearly(self):
        rule = parse_rrule('FREQ=YEARLY;INTERVAL=2', start_reference=date(2024, 2, 29))
        self.assertEqual(rule.frequency, Frequency.YEARLY)
        self.assertEqual(rule.interval, 2)
        self.assertIsNone(rule.by_month)
        self.assertEqual(rule.months, frozenset([2]))
        self.assertEqual(format_rrule(rule), 'FREQ=YEARLY;INTERVAL=2')

        rule = parse_rrule('FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU', start_reference=date(2024, 1, 1))
        self.assertEqual(rule.by_month, frozenset([3]))
        self.assertEqual(format_rrule(rule), 'FREQ=YEARLY;BYDAY=-1SU;BYMONTH=3')

    def test_parse_week_start(self):
        rule = parse_rrule('FREQ=WEEKLY;INTERVAL=2;WKST=SU;BYDAY=SU,TU', start_reference=date(2024, 1, 7))
        self.assertEqual(rule.week_start, SUNDAY)
        self.assertEqual(format_rrule(rule), 'FREQ=WEEKLY;INTERVAL=2;WKST=SU;BYDAY=SU,TU')

    def test_daily_weekdays_read_as_weekly(self):
        rule = parse_rrule('FREQ=DAILY;BYDAY=MO,TU,WE,TH,FR', start_reference=date(2024, 1, 1))
        self.assertEqual(rule.frequency, Frequency.WEEKLY)
        self.assertEqual(rule.by_weekday, frozenset([0, 1, 2, 3, 4]))

    def test_parse_errors(self):
        for text in [
            '',
            'weekly-ish',
            'FREQ=HOURLY',
            'INTERVAL=2',
            'FREQ=WEEKLY;BYDAY=XX',
            'FREQ=DAILY;INTERVAL=0',
        ]:
            with self.assertRaises(ValueError, msg=text):
                parse_rrule(text, start_reference=date(2024, 1, 1))

    def test_parse_unsupported_parts(self):
        for text in [
            'FREQ=MONTHLY;BYDAY=MO,TU,WE,TH,FR;BYSETPOS=-1',
            'FREQ=DAILY;BYHOUR=9',
            'FREQ=YEARLY;BYYEARDAY=100',
            'FREQ=DAILY;INTERVAL=2;BYDAY=MO',
            'FREQ=MONTHLY;BYMONTHDAY=1,15',
            'FREQ=MONTHLY;BYMONTH=1,7',
        ]:
            with self.assertRaises(ValueError, msg=text):
                parse_rrule(text, start_reference=date(2024, 1, 1))

    def test_parse_requires_anchor(self):
        with self.assertRaises(ValueError):
            parse_rrule('FREQ=DAILY')

    def test_format_orders_sunday_first(self):
        rule = parse_rrule('FREQ=WEEKLY;BYDAY=WE,SU', start_reference=date(2024, 1, 7))
        self.assertEqual(format_rrule(rule), 'FREQ=WEEKLY;BYDAY=SU,WE')
        self.assertEqual(
            format_rrule(rule, include_start=True),
            'DTSTART:20240107\nRRULE:FREQ=WEEKLY;BYDAY=SU,WE'
        )

    def test_format_recurrence_rule(self):
        self.assertEqual(format_recurrence_rule('FREQ=WEEKLY;BYDAY=SU'), 'Weekly on Sundays')
        self.assertEqual(
            format_recurrence_rule('FREQ=WEEKLY;INTERVAL=2;BYDAY=SU,WE'),
            'Every 2 weeks on Sunday, Wednesday'
        )
        self.assertEqual(format_recurrence_rule('FREQ=DAILY;INTERVAL=3'), 'Every 3 days')
        self.assertEqual(format_recurrence_rule('FREQ=MONTHLY'), 'Monthly')
        self.assertEqual(format_recurrence_rule(''), 'No recurrence')
        self.assertEqual(format_recurrence_rule('weekly-ish'), 'weekly-ish')
        self.assertEqual(format_recurrence_rule('FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR,SA,SU'), 'Weekly (all days)')
        self.assertEqual(format_recurrence_rule('FREQ=MONTHLY;BYDAY=1SU'), 'Monthly')
        self.assertEqual(format_recurrence_rule('FREQ=YEARLY'), 'Yearly')
        self.assertEqual(format_recurrence_rule('FREQ=YEARLY;INTERVAL=5'), 'Every 5 years')
        self.assertEqual(format_recurrence_rule('FREQ=HOURLY'), 'FREQ=HOURLY')

    def test_format_rule_object(self):
        self.assertEqual(format_recurrence_rule(sunday_rule(interval=2)), 'Every 2 weeks on Sundays')

    def test_badge_text(self):
        self.assertEqual(get_recurrence_badge_text('FREQ=YEARLY;INTERVAL=2'), '2y')
        self.assertEqual(get_recurrence_badge_text('FREQ=WEEKLY;INTERVAL=2;BYDAY=SU'), '2w on Sun')
        self.assertEqual(get_recurrence_badge_text('FREQ=WEEKLY;BYDAY=SU'), 'Weekly on Sun')
        self.assertEqual(get_recurrence_badge_text(''), '')


class BulkRangeResolverTests(SimpleTestCase):
    """Test bulk duration options."""

    def test_session_counts(self):
        self.assertEqual(get_session_count_for_option('next_5_sessions'), 5)
        self.assertEqual(get_session_count_for_option(BulkDurationOption.NEXT_8_SESSIONS), 8)
        self.assertEqual(get_session_count_for_option('current_month'), 0)

    def test_current_month(self):
        self.assertEqual(
            get_range_for_option('current_month', date(2024, 2, 15)),
            DateRange(start=date(2024, 2, 1), end=date(2024, 2, 29))
        )

    def test_current_month_is_stable_within_month(self):
        first = get_range_for_option('current_month', date(2024, 1, 1))
        last = get_range_for_option('current_month', date(2024, 1, 31))
        self.assertEqual(first, last)

    def test_next_months_start_next_month(self):
        self.assertEqual(
            get_range_for_option('next_2_months', date(2024, 1, 15)),
            DateRange(start=date(2024, 2, 1), end=date(2024, 3, 31))
        )

    def test_next_months_cross_year(self):
        self.assertEqual(
            get_range_for_option('next_3_months', datetime(2024, 11, 20, 8, 0)),
            DateRange(start=date(2024, 12, 1), end=date(2025, 2, 28))
        )

    def test_range_for_count_option_raises(self):
        with self.assertRaises(ValueError):
            get_range_for_option('next_3_sessions', date(2024, 1, 15))

    def test_resolve(self):
        today = date(2024, 1, 15)
        self.assertEqual(resolve_bulk_option('next_3_sessions', today), CountRequest(count=3))
        self.assertEqual(
            resolve_bulk_option('custom_range', today, date(2024, 3, 1), date(2024, 3, 31)),
            RangeRequest(start=date(2024, 3, 1), end=date(2024, 3, 31))
        )
        self.assertEqual(
            resolve_bulk_option('next_4_months', today),
            RangeRequest(start=date(2024, 2, 1), end=date(2024, 5, 31))
        )

    def test_custom_range_requires_both_dates(self):
        with self.assertRaises(ValueError):
            resolve_bulk_option('custom_range', date(2024, 1, 15), custom_start=date(2024, 3, 1))

    def test_unknown_option(self):
        with self.assertRaises(ValueError):
            resolve_bulk_option('next_year', date(2024, 1, 15))


class DraftBuilderTests(SimpleTestCase):
    """Test draft session building."""

    def setUp(self):
        self.template = SessionTemplate(
            occasion_id=1,
            occasion_name='Sunday Service',
            start_clock=time(9, 0),
            end_clock=time(11, 30),
        )

    def test_build_draft(self):
        draft = build_draft(self.template, date(2024, 1, 14))
        self.assertEqual(draft.occasion_id, 1)
        self.assertEqual(draft.name, 'Sunday Service – January 14th, 2024')
        self.assertEqual(draft.start_time, aware(2024, 1, 14, 9, 0))
        self.assertEqual(draft.end_time, aware(2024, 1, 14, 11, 30))
        self.assertEqual(draft.session_date, date(2024, 1, 14))
        self.assertEqual(draft.marking_modes, DEFAULT_MARKING_MODES)
        self.assertIsNone(draft.allowed_tags)

    def test_build_is_deterministic_except_token(self):
        first = build_draft(self.template, date(2024, 1, 14))
        second = build_draft(self.template, date(2024, 1, 14))
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.to_payload(), second.to_payload())

    def test_datetime_clock_keeps_hour_and_minute(self):
        template = SessionTemplate(
            occasion_id=1,
            occasion_name='Sunday Service',
            start_clock=aware(2023, 6, 1, 18, 45, 30),
            end_clock=aware(2023, 6, 1, 20, 0),
        )
        draft = build_draft(template, date(2024, 1, 14))
        self.assertEqual(draft.start_time, aware(2024, 1, 14, 18, 45))

    def test_location_only_with_proximity(self):
        location = Location(lat=6.5, lng=3.4, radius=100)
        self.template.settings = SessionSettings(location=location)
        self.assertIsNone(build_draft(self.template, date(2024, 1, 14)).location)

        self.template.settings = SessionSettings(location=location, proximity_required=True)
        draft = build_draft(self.template, date(2024, 1, 14))
        self.assertEqual(draft.to_payload()['location'], {'lat': 6.5, 'lng': 3.4, 'radius': 100})

    def test_each_draft_gets_its_own_location(self):
        location = Location(lat=6.5, lng=3.4, radius=100)
        self.template.settings = SessionSettings(location=location, proximity_required=True)
        first, second = build_drafts(self.template, [date(2024, 1, 14), date(2024, 1, 21)])
        self.assertEqual(first.location, location)
        self.assertIsNot(first.location, location)
        self.assertIsNot(first.location, second.location)

        first.location.radius = 50
        self.assertEqual(second.location.radius, 100)
        self.assertEqual(location.radius, 100)

    def test_proximity_without_location(self):
        self.template.settings = SessionSettings(proximity_required=True)
        self.assertIsNone(build_draft(self.template, date(2024, 1, 14)).location)

    def test_restrictions_copied(self):
        self.template.settings = SessionSettings(allowed_tags=['choir'], allowed_groups=[])
        draft = build_draft(self.template, date(2024, 1, 14))
        self.assertEqual(draft.allowed_tags, ['choir'])
        self.assertIsNone(draft.allowed_groups)

    def test_build_drafts_keeps_order(self):
        drafts = build_drafts(self.template, [date(2024, 1, 21), date(2024, 1, 14)])
        self.assertEqual([draft.session_date for draft in drafts], [date(2024, 1, 21), date(2024, 1, 14)])

    def test_session_names(self):
        self.assertEqual(
            compute_session_name('Sunday Service', '  Youth Night ', date(2024, 3, 2)),
            'Youth Night – March 2nd, 2024'
        )
        self.assertEqual(compute_session_name('', '', date(2024, 3, 3)), 'March 3rd, 2024')

    def test_date_labels(self):
        self.assertEqual(format_friendly_date(date(2024, 1, 1)), 'January 1st, 2024')
        self.assertEqual(format_friendly_date(date(2024, 1, 11)), 'January 11th, 2024')
        self.assertEqual(format_friendly_date(date(2024, 1, 22)), 'January 22nd, 2024')
        self.assertEqual(format_date_label(date(2024, 1, 14)), 'Sun, 14 Jan 2024')


class DraftSetTests(SimpleTestCase):
    """Test editing drafts."""

    def setUp(self):
        template = SessionTemplate(
            occasion_id=1,
            occasion_name='Sunday Service',
            start_clock=time(9, 0),
            end_clock=time(11, 0),
        )
        self.drafts = build_drafts(template, [date(2024, 1, 14), date(2024, 1, 21)])
        self.draft_set = DraftSet(self.drafts, dates_read_only=True)

    def test_update_name_and_time(self):
        token = self.drafts[0].id
        updated = self.draft_set.update(token, name='Early', start_time=aware(2024, 1, 14, 8, 0))
        self.assertEqual(updated.name, 'Early')
        self.assertEqual(self.draft_set.get(token).start_time, aware(2024, 1, 14, 8, 0))

    def test_read_only_dates(self):
        with self.assertRaises(ValueError):
            self.draft_set.update(self.drafts[0].id, start_time=aware(2024, 1, 15, 9, 0))

    def test_dates_editable_when_not_read_only(self):
        draft_set = DraftSet(self.drafts)
        updated = draft_set.update(self.drafts[0].id, start_time=aware(2024, 1, 15, 9, 0))
        self.assertEqual(updated.session_date, date(2024, 1, 15))

    def test_non_editable_field(self):
        with self.assertRaises(ValueError):
            self.draft_set.update(self.drafts[0].id, occasion_id=2)

    def test_unknown_token(self):
        with self.assertRaises(KeyError):
            self.draft_set.update('missing', name='x')

    def test_remove(self):
        token = self.drafts[0].id
        self.assertEqual(self.draft_set.remove(token), self.drafts[0])
        self.assertNotIn(token, self.draft_set)
        self.assertIsNone(self.draft_set.remove(token))
        self.assertEqual(len(self.draft_set), 1)


class ConflictParsingTests(SimpleTestCase):
    """Test conflict message parsing."""

    def test_bulk_conflict(self):
        info = parse_conflict_error(
            'Conflicting sessions detected on the same date/time: '
            'Sunday Service (2024-01-14 09:00–11:00) | Sunday Service (2024-01-21 09:00–11:00)'
        )
        self.assertEqual(info, ConflictErrorInfo(mode=BULK, items=[
            'Sunday Service (2024-01-14 09:00–11:00)',
            'Sunday Service (2024-01-21 09:00–11:00)',
        ]))
        self.assertEqual(info.title, 'Conflicting sessions detected')

    def test_single_conflict(self):
        info = parse_conflict_error('  Conflicting session exists on the same date/time: Morning, Evening  ')
        self.assertEqual(info.mode, SINGLE)
        self.assertEqual(info.items, ['Morning', 'Evening'])
        self.assertEqual(info.title, 'Conflicting session detected')

    def test_empty_items_filtered(self):
        info = parse_conflict_error('Conflicting sessions detected on the same date/time: A |  | B')
        self.assertEqual(info.items, ['A', 'B'])

    def test_not_a_conflict(self):
        self.assertIsNone(parse_conflict_error('Network error'))
        self.assertIsNone(parse_conflict_error(''))
        self.assertIsNone(parse_conflict_error(None))
        self.assertEqual(classify_failure('Network error').mode, OTHER)
        self.assertFalse(classify_failure('Network error').is_conflict)

    def test_format_then_parse(self):
        message = format_conflict_message(BULK, ['A (2024-01-14 09:00–11:00)', 'B (2024-01-14 10:00–12:00)'])
        self.assertEqual(parse_conflict_error(message).items, ['A (2024-01-14 09:00–11:00)', 'B (2024-01-14 10:00–12:00)'])

    def test_report_state(self):
        report = ConflictReport()
        self.assertFalse(report.is_reported)
        report.report(ConflictErrorInfo(mode=SINGLE, items=['A']))
        self.assertTrue(report.is_reported)
        report.dismiss()
        self.assertIsNone(report.info)


class SessionCreationWizardTests(SimpleTestCase):
    """Test the session creation wizard without persistence."""

    def setUp(self):
        self.recurring = OccasionInfo(id=1, name='Sunday Service', rule=sunday_rule())
        self.one_off = OccasionInfo(id=2, name='Retreat')
        self.today = date(2024, 1, 10)

    def make_wizard(self, occasion, mode='single', **kwargs):
        return SessionCreationWizard(
            occasion=occasion,
            mode=mode,
            start_clock=time(9, 0),
            end_clock=time(11, 0),
            **kwargs
        )

    def test_missing_occasion(self):
        wizard = self.make_wizard(None)
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [MISSING_OCCASION])

    def test_single_missing_date(self):
        wizard = self.make_wizard(self.recurring)
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [MISSING_DATE])

    def test_single_date_outside_pattern(self):
        wizard = self.make_wizard(self.recurring)
        wizard.single_date = '2024-01-10'
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [DATE_NOT_IN_PATTERN])
        self.assertEqual(len(wizard.drafts), 0)

    def test_single_date_in_pattern(self):
        wizard = self.make_wizard(self.recurring)
        wizard.single_date = date(2024, 1, 14)
        self.assertTrue(wizard.generate(self.today))
        self.assertEqual([draft.session_date for draft in wizard.drafts], [date(2024, 1, 14)])
        self.assertTrue(wizard.drafts.dates_read_only)

    def test_single_date_one_off_any_day(self):
        wizard = self.make_wizard(self.one_off)
        wizard.single_date = '2024-01-10'
        self.assertTrue(wizard.generate(self.today))
        self.assertFalse(wizard.drafts.dates_read_only)

    def test_suggest_single_date(self):
        self.assertEqual(self.make_wizard(self.recurring).suggest_single_date(self.today), date(2024, 1, 14))
        self.assertIsNone(self.make_wizard(self.one_off).suggest_single_date(self.today))

    def test_bulk_recurring_next_sessions(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'next_3_sessions'
        self.assertTrue(wizard.generate(self.today))
        self.assertEqual(
            [draft.session_date for draft in wizard.drafts],
            [date(2024, 1, 14), date(2024, 1, 21), date(2024, 1, 28)]
        )

    def test_bulk_recurring_month_range(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = BulkDurationOption.NEXT_2_MONTHS
        self.assertTrue(wizard.generate(self.today))
        self.assertEqual(len(wizard.drafts), 9)  # Sundays of February and March 2024

    def test_bulk_custom_range_missing_dates(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'custom_range'
        wizard.custom_start = '2024-01-01'
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [MISSING_CUSTOM_RANGE])

    def test_bulk_custom_range_without_matches(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'custom_range'
        wizard.custom_start = date(2024, 1, 8)
        wizard.custom_end = date(2024, 1, 13)
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [NO_MATCHING_DATES])

    def test_bulk_manual_dates(self):
        wizard = self.make_wizard(self.one_off, mode='bulk')
        wizard.manual_dates = ['2024-03-05', '2024-03-01', date(2024, 3, 5)]
        self.assertTrue(wizard.generate(self.today))
        self.assertEqual(
            [draft.session_date for draft in wizard.drafts],
            [date(2024, 3, 1), date(2024, 3, 5)]
        )

    def test_bulk_manual_dates_missing(self):
        wizard = self.make_wizard(self.one_off, mode='bulk')
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [MISSING_MANUAL_DATES])

    def test_failed_generate_keeps_previous_drafts(self):
        wizard = self.make_wizard(self.one_off, mode='bulk')
        wizard.manual_dates = ['2024-03-01']
        self.assertTrue(wizard.generate(self.today))
        previous = [draft.id for draft in wizard.drafts]

        wizard.manual_dates = ['not a date', '']
        self.assertFalse(wizard.generate(self.today))
        self.assertEqual(wizard.validation_errors, [NO_VALID_DATES])
        self.assertEqual([draft.id for draft in wizard.drafts], previous)

    def test_regenerate_replaces_drafts(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'next_2_sessions'
        wizard.generate(self.today)
        first_tokens = {draft.id for draft in wizard.drafts}

        wizard.generate(self.today)
        self.assertEqual(len(wizard.drafts), 2)
        self.assertFalse(first_tokens & {draft.id for draft in wizard.drafts})

    def test_default_clock_spans_two_hours(self):
        wizard = SessionCreationWizard(occasion=self.one_off, start_clock=time(18, 30))
        self.assertEqual(wizard.end_clock, time(20, 30))

    def test_submit_without_drafts(self):
        wizard = self.make_wizard(self.recurring)
        self.assertIsNone(wizard.submit(self.unexpected_call, self.unexpected_call))
        self.assertEqual(wizard.validation_errors, [NO_DRAFTS])

    def test_submit_single_uses_create_one(self):
        wizard = self.make_wizard(self.recurring)
        wizard.single_date = date(2024, 1, 14)
        wizard.generate(self.today)
        token = next(iter(wizard.drafts)).id

        payloads = []

        def create_one(payload):
            payloads.append(payload)
            return SimpleNamespace(id=42)

        self.assertEqual(wizard.submit(create_one, self.unexpected_call), {token: 42})
        self.assertEqual(payloads[0]['occasion_id'], 1)
        self.assertNotIn('id', payloads[0])
        self.assertEqual(len(wizard.drafts), 0)

    def test_submit_many_uses_create_many(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'next_2_sessions'
        wizard.generate(self.today)

        def create_many(payloads):
            return [SimpleNamespace(id=index) for index, _ in enumerate(payloads, start=10)]

        persisted = wizard.submit(self.unexpected_call, create_many)
        self.assertEqual(sorted(persisted.values()), [10, 11])

    def test_submit_conflict_keeps_drafts(self):
        wizard = self.make_wizard(self.recurring, mode='bulk')
        wizard.bulk_option = 'next_2_sessions'
        wizard.generate(self.today)

        def create_many(payloads):
            raise ValueError(
                'Conflicting sessions detected on the same date/time: '
                'Sunday Service (2024-01-14 09:00–11:00)'
            )

        self.assertIsNone(wizard.submit(self.unexpected_call, create_many))
        self.assertTrue(wizard.conflict.is_reported)
        self.assertEqual(wizard.conflict.info.items, ['Sunday Service (2024-01-14 09:00–11:00)'])
        self.assertEqual(len(wizard.drafts), 2)

        wizard.dismiss_conflict()
        self.assertFalse(wizard.conflict.is_reported)

    def test_submit_other_error_propagates(self):
        wizard = self.make_wizard(self.recurring)
        wizard.single_date = date(2024, 1, 14)
        wizard.generate(self.today)

        def create_one(payload):
            raise RuntimeError('Network error')

        with self.assertRaises(RuntimeError):
            wizard.submit(create_one, self.unexpected_call)
        self.assertFalse(wizard.conflict.is_reported)
        self.assertEqual(len(wizard.drafts), 1)

    def test_submit_validates_drafts(self):
        wizard = self.make_wizard(self.recurring, base_name='x' * 100)
        wizard.single_date = date(2024, 1, 14)
        wizard.generate(self.today)

        self.assertIsNone(wizard.submit(self.unexpected_call, self.unexpected_call))
        self.assertEqual(wizard.validation_errors, ['Session 1: Session name must be less than 100 characters'])

    def test_submit_rejects_inverted_times(self):
        wizard = self.make_wizard(self.recurring)
        wizard.single_date = date(2024, 1, 14)
        wizard.generate(self.today)
        token = next(iter(wizard.drafts)).id
        wizard.update_draft(token, end_time=aware(2024, 1, 14, 8, 0))

        self.assertIsNone(wizard.submit(self.unexpected_call, self.unexpected_call))
        self.assertEqual(wizard.validation_errors, ['Session 1: End time must be after start time'])

    @staticmethod
    def unexpected_call(*args):
        raise AssertionError('persistence should not be called')


class OccasionModelTests(TestCase):
    """Test Occasion model and manager."""

    def test_create_recurring_occasion(self):
        occasion = Occasion.objects.create(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )
        self.assertTrue(occasion.is_recurring)
        self.assertEqual(occasion.recurrence_label, 'Weekly on Sundays')
        self.assertEqual(occasion.get_recurrence_rule(), sunday_rule())
        self.assertEqual(str(occasion), 'Sunday Service (Weekly on Sundays)')

    def test_anchor_defaults_to_creation_date(self):
        occasion = Occasion.objects.create(name='Daily Prayer', recurrence_rule='FREQ=DAILY')
        self.assertEqual(occasion.get_recurrence_rule().start_reference, timezone.localdate(occasion.created_at))

    def test_anchor_uses_local_creation_date(self):
        occasion = Occasion.objects.create(name='Daily Prayer', recurrence_rule='FREQ=DAILY')
        # 20:00 UTC on the 6th is already the 7th at UTC+13
        Occasion.objects.filter(pk=occasion.pk).update(
            created_at=datetime(2024, 1, 6, 20, 0, tzinfo=dt_timezone.utc)
        )
        occasion.refresh_from_db()

        with timezone.override(dt_timezone(timedelta(hours=13))):
            self.assertEqual(occasion.anchor_date, date(2024, 1, 7))
            self.assertEqual(occasion.get_recurrence_rule().start_reference, date(2024, 1, 7))

    def test_invalid_rule_rejected(self):
        with self.assertRaises(ValidationError):
            Occasion.objects.create(name='Broken', recurrence_rule='FREQ=HOURLY')

    def test_recurring_filters(self):
        Occasion.objects.create(name='Weekly', recurrence_rule='FREQ=WEEKLY')
        Occasion.objects.create(name='Once')
        Occasion.objects.create(name='Old', recurrence_rule='FREQ=DAILY', is_active=False)

        self.assertEqual(Occasion.objects.recurring().count(), 2)
        self.assertEqual(Occasion.objects.one_off().count(), 1)
        self.assertEqual(list(Occasion.objects.active().recurring().values_list('name', flat=True)), ['Weekly'])


class AttendanceSessionModelTests(TestCase):
    """Test AttendanceSession model and manager."""

    def setUp(self):
        self.occasion = Occasion.objects.create(name='Midweek Service')

    def test_end_before_start_rejected(self):
        with self.assertRaises(ValidationError):
            AttendanceSession.objects.create(
                occasion=self.occasion,
                start_time=aware(2024, 1, 10, 18, 0),
                end_time=aware(2024, 1, 10, 17, 0),
            )

    def test_proximity_requires_location(self):
        with self.assertRaises(ValidationError):
            AttendanceSession.objects.create(
                occasion=self.occasion,
                start_time=aware(2024, 1, 10, 18, 0),
                end_time=aware(2024, 1, 10, 20, 0),
                proximity_required=True,
            )

    def test_overlapping_excludes_touching(self):
        session = AttendanceSession.objects.create(
            occasion=self.occasion,
            start_time=aware(2024, 1, 10, 18, 0),
            end_time=aware(2024, 1, 10, 20, 0),
        )
        self.assertEqual(session.duration_minutes, 120)
        self.assertEqual(session.marking_modes, DEFAULT_MARKING_MODES)
        overlapping = AttendanceSession.objects.overlapping
        self.assertTrue(overlapping(aware(2024, 1, 10, 19, 0), aware(2024, 1, 10, 21, 0)).exists())
        self.assertFalse(overlapping(aware(2024, 1, 10, 20, 0), aware(2024, 1, 10, 21, 0)).exists())


class SessionServiceTests(TestCase):
    """Test session services and conflict detection."""

    def setUp(self):
        self.occasion = services.create_occasion(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )
        self.other = services.create_occasion(name='Choir Practice')

    def payload(self, start, end, occasion=None, **extra):
        data = {
            'occasion_id': (occasion or self.occasion).pk,
            'name': 'Morning',
            'start_time': start,
            'end_time': end,
        }
        data.update(extra)
        return data

    def test_create_occasion_invalid_rule(self):
        with self.assertRaises(ValueError):
            services.create_occasion(name='Broken', recurrence_rule='FREQ=WEEKLY;BYDAY=XX')

    def test_create_occasion_defaults_anchor(self):
        occasion = services.create_occasion(name='Daily', recurrence_rule=' FREQ=DAILY ')
        self.assertEqual(occasion.recurrence_rule, 'FREQ=DAILY')
        self.assertEqual(occasion.recurrence_start, timezone.localdate())

    def test_update_occasion(self):
        updated = services.update_occasion(self.occasion, OccasionUpdateData(name='Main Service'))
        self.assertEqual(updated.name, 'Main Service')
        self.assertEqual(updated.recurrence_rule, 'FREQ=WEEKLY;BYDAY=SU')

        with self.assertRaises(ValueError):
            services.update_occasion(self.occasion, OccasionUpdateData(recurrence_rule='FREQ=SECONDLY'))

    def test_create_session(self):
        session = services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        self.assertEqual(session.name, 'Morning')
        self.assertFalse(session.is_open)
        self.assertEqual(session.marking_modes, DEFAULT_MARKING_MODES)

    def test_create_session_conflict(self):
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))

        with self.assertRaises(services.SessionConflictError) as ctx:
            services.create_session(self.payload(aware(2024, 1, 14, 10, 0), aware(2024, 1, 14, 12, 0)))

        self.assertEqual(
            str(ctx.exception),
            'Conflicting session exists on the same date/time: Morning (2024-01-14 09:00–11:00)'
        )
        self.assertEqual(ctx.exception.info.mode, SINGLE)
        self.assertEqual(parse_conflict_error(str(ctx.exception)), ctx.exception.info)

    def test_touching_sessions_do_not_conflict(self):
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        services.create_session(self.payload(aware(2024, 1, 14, 11, 0), aware(2024, 1, 14, 12, 0)))
        self.assertEqual(AttendanceSession.objects.count(), 2)

    def test_other_occasion_does_not_conflict(self):
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0), occasion=self.other))
        self.assertEqual(AttendanceSession.objects.count(), 2)

    def test_deleted_sessions_do_not_conflict(self):
        session = services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        services.delete_session(session)
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        self.assertEqual(AttendanceSession.objects.live().count(), 1)

    def test_create_session_invalid(self):
        with self.assertRaises(ValueError):
            services.create_session(self.payload(aware(2024, 1, 14, 11, 0), aware(2024, 1, 14, 9, 0)))
        with self.assertRaises(ValueError):
            services.create_session(self.payload(
                aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0), proximity_required=True
            ))
        with self.assertRaises(ValueError):
            services.create_session({'occasion_id': 9999, 'start_time': aware(2024, 1, 14, 9, 0),
                                     'end_time': aware(2024, 1, 14, 11, 0)})

    def test_bulk_create(self):
        sessions = services.bulk_create_sessions([
            self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)),
            self.payload(aware(2024, 1, 21, 9, 0), aware(2024, 1, 21, 11, 0)),
        ])
        self.assertEqual(len(sessions), 2)
        self.assertTrue(all(session.pk for session in sessions))

    def test_bulk_conflict_is_all_or_nothing(self):
        services.create_session(self.payload(aware(2024, 1, 21, 9, 0), aware(2024, 1, 21, 11, 0), name='Existing'))

        with self.assertRaises(services.SessionConflictError) as ctx:
            services.bulk_create_sessions([
                self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)),
                self.payload(aware(2024, 1, 21, 10, 0), aware(2024, 1, 21, 12, 0)),
            ])

        self.assertEqual(ctx.exception.info.mode, BULK)
        self.assertEqual(ctx.exception.info.items, ['Existing (2024-01-21 09:00–11:00)'])
        self.assertEqual(AttendanceSession.objects.count(), 1)

    def test_bulk_conflict_within_batch(self):
        with self.assertRaises(services.SessionConflictError) as ctx:
            services.bulk_create_sessions([
                self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)),
                self.payload(aware(2024, 1, 14, 10, 0), aware(2024, 1, 14, 12, 0), name='Late'),
            ])
        self.assertEqual(ctx.exception.info.items, ['Late (2024-01-14 10:00–12:00)'])
        self.assertFalse(AttendanceSession.objects.exists())

    def test_bulk_create_empty(self):
        with self.assertRaises(ValueError):
            services.bulk_create_sessions([])

    def test_update_session_conflict(self):
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        session = services.create_session(self.payload(aware(2024, 1, 14, 12, 0), aware(2024, 1, 14, 13, 0)))

        with self.assertRaises(services.SessionConflictError):
            services.update_session(session, SessionUpdateData(start_time=aware(2024, 1, 14, 10, 0)))

        updated = services.update_session(session, SessionUpdateData(name='Noon', is_open=True))
        self.assertEqual(updated.name, 'Noon')
        self.assertTrue(updated.is_open)

    def test_delete_session_twice(self):
        session = services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        services.delete_session(session)
        with self.assertRaises(ValueError):
            services.delete_session(session)

    def test_delete_occasion(self):
        self.assertTrue(services.delete_occasion(self.other))
        self.assertFalse(Occasion.objects.filter(pk=self.other.pk).exists())

        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        self.assertFalse(services.delete_occasion(self.occasion))
        self.occasion.refresh_from_db()
        self.assertFalse(self.occasion.is_active)

    def test_inactive_occasion_rejects_sessions(self):
        services.update_occasion(self.occasion, OccasionUpdateData(is_active=False))
        with self.assertRaises(ValueError):
            services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))

    def test_sessions_in_range(self):
        services.create_session(self.payload(aware(2024, 1, 14, 9, 0), aware(2024, 1, 14, 11, 0)))
        services.create_session(self.payload(aware(2024, 2, 4, 9, 0), aware(2024, 2, 4, 11, 0)))
        services.create_session(self.payload(aware(2024, 1, 15, 9, 0), aware(2024, 1, 15, 11, 0), occasion=self.other))

        sessions = services.get_sessions_in_range(aware(2024, 1, 1), aware(2024, 1, 31))
        self.assertEqual(len(sessions), 2)
        sessions = services.get_sessions_in_range(aware(2024, 1, 1), aware(2024, 1, 31), self.occasion)
        self.assertEqual(len(sessions), 1)

        with self.assertRaises(ValueError):
            services.get_sessions_in_range(aware(2024, 1, 31), aware(2024, 1, 1))

    def test_preview_occurrences(self):
        dates = services.preview_occurrences(self.occasion, 'next_3_sessions', date(2024, 1, 10))
        self.assertEqual(dates, [date(2024, 1, 14), date(2024, 1, 21), date(2024, 1, 28)])

        with self.assertRaises(ValueError):
            services.preview_occurrences(self.other, 'next_3_sessions', date(2024, 1, 10))

    def test_occasion_matches_date(self):
        self.assertTrue(services.occasion_matches_date(self.occasion, date(2024, 1, 14)))
        self.assertFalse(services.occasion_matches_date(self.occasion, date(2024, 1, 10)))
        self.assertTrue(services.occasion_matches_date(self.other, date(2024, 1, 10)))

    def test_materialize_sessions_is_idempotent(self):
        created = services.materialize_sessions(self.occasion, 3, time(9, 0), time(11, 0), date(2024, 1, 10))
        self.assertEqual(
            [session.start_time for session in created],
            [aware(2024, 1, 14, 9, 0), aware(2024, 1, 21, 9, 0), aware(2024, 1, 28, 9, 0)]
        )
        self.assertEqual(created[0].name, 'Sunday Service – January 14th, 2024')

        again = services.materialize_sessions(self.occasion, 3, time(9, 0), time(11, 0), date(2024, 1, 10))
        self.assertEqual(again, [])
        self.assertEqual(AttendanceSession.objects.count(), 3)

    def test_materialize_skips_one_off(self):
        self.assertEqual(services.materialize_sessions(self.other, 3, time(9, 0), time(11, 0), date(2024, 1, 10)), [])


class OccasionAPITests(APITestCase):
    """Test occasion API endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.occasion = Occasion.objects.create(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )

    def test_create_occasion(self):
        data = {
            'name': 'Bible Study',
            'recurrence_rule': 'FREQ=WEEKLY;INTERVAL=2;BYDAY=WE',
            'recurrence_start': '2024-01-03',
            'default_duration_minutes': 90,
        }
        response = self.client.post('/api/occasions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['recurrence_label'], 'Every 2 weeks on Wednesdays')
        self.assertEqual(response.data['recurrence_badge'], '2w on Wed')
        self.assertTrue(response.data['is_recurring'])

    def test_create_occasion_invalid_rule(self):
        response = self.client.post('/api/occasions/', {'name': 'Broken', 'recurrence_rule': 'FREQ=HOURLY'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('detail', response.data)

    def test_list_occasions(self):
        Occasion.objects.create(name='Retreat', is_active=False)
        response = self.client.get('/api/occasions/')
        self.assertEqual(len(response.data), 2)
        response = self.client.get('/api/occasions/?active=true')
        self.assertEqual([item['name'] for item in response.data], ['Sunday Service'])

    def test_update_occasion(self):
        response = self.client.patch(f'/api/occasions/{self.occasion.pk}/', {'name': 'Main Service'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Main Service')
        self.assertEqual(response.data['recurrence_rule'], 'FREQ=WEEKLY;BYDAY=SU')

    def test_delete_occasion(self):
        response = self.client.delete(f'/api/occasions/{self.occasion.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['deleted'])
        self.assertEqual(self.client.get(f'/api/occasions/{self.occasion.pk}/').status_code, status.HTTP_404_NOT_FOUND)

    def test_occurrences(self):
        response = self.client.get(
            f'/api/occasions/{self.occasion.pk}/occurrences/',
            {'option': 'custom_range', 'start': '2024-01-01', 'end': '2024-01-31'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['dates'], ['2024-01-07', '2024-01-14', '2024-01-21', '2024-01-28'])

    def test_occurrences_custom_range_needs_dates(self):
        response = self.client.get(f'/api/occasions/{self.occasion.pk}/occurrences/', {'option': 'custom_range'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_occurrences_for_one_off(self):
        one_off = Occasion.objects.create(name='Retreat')
        response = self.client.get(f'/api/occasions/{one_off.pk}/occurrences/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_date_match(self):
        url = f'/api/occasions/{self.occasion.pk}/matches/'
        self.assertFalse(self.client.get(url, {'date': '2024-01-10'}).data['matches'])
        self.assertTrue(self.client.get(url, {'date': '2024-01-14'}).data['matches'])
        self.assertEqual(self.client.get(url).status_code, status.HTTP_400_BAD_REQUEST)


class SessionAPITests(APITestCase):
    """Test session API endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.occasion = Occasion.objects.create(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )

    def session_data(self, start, end, **extra):
        data = {
            'occasion_id': self.occasion.pk,
            'name': 'Morning',
            'start_time': start,
            'end_time': end,
        }
        data.update(extra)
        return data

    def test_create_session(self):
        response = self.client.post(
            '/api/sessions/',
            self.session_data('2024-01-14T09:00:00Z', '2024-01-14T11:00:00Z'),
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['occasion_name'], 'Sunday Service')
        self.assertEqual(response.data['duration_minutes'], 120)
        self.assertTrue(response.data['is_open'])

    def test_create_session_conflict(self):
        data = self.session_data('2024-01-14T09:00:00Z', '2024-01-14T11:00:00Z')
        self.client.post('/api/sessions/', data, format='json')
        response = self.client.post('/api/sessions/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['conflict'], {
            'mode': 'single',
            'items': ['Morning (2024-01-14 09:00–11:00)'],
        })

    def test_create_session_validation(self):
        response = self.client.post(
            '/api/sessions/',
            self.session_data('2024-01-14T11:00:00Z', '2024-01-14T09:00:00Z'),
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(
            '/api/sessions/',
            self.session_data('2024-01-14T09:00:00Z', '2024-01-14T11:00:00Z', marking_modes={'email': False}),
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_bulk_create(self):
        response = self.client.post('/api/sessions/bulk/', [
            self.session_data('2024-01-14T09:00:00Z', '2024-01-14T11:00:00Z'),
            self.session_data('2024-01-21T09:00:00Z', '2024-01-21T11:00:00Z'),
        ], format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data), 2)

    def test_bulk_create_conflict(self):
        response = self.client.post('/api/sessions/bulk/', [
            self.session_data('2024-01-14T09:00:00Z', '2024-01-14T11:00:00Z'),
            self.session_data('2024-01-14T10:00:00Z', '2024-01-14T12:00:00Z'),
        ], format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['conflict']['mode'], 'bulk')
        self.assertFalse(AttendanceSession.objects.exists())

    def test_list_sessions_in_range(self):
        services.create_session({
            'occasion_id': self.occasion.pk,
            'start_time': aware(2024, 1, 14, 9, 0),
            'end_time': aware(2024, 1, 14, 11, 0),
        })
        response = self.client.get('/api/sessions/', {
            'start': '2024-01-01T00:00:00Z',
            'end': '2024-01-31T23:59:59Z',
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_update_and_delete_session(self):
        session = services.create_session({
            'occasion_id': self.occasion.pk,
            'start_time': aware(2024, 1, 14, 9, 0),
            'end_time': aware(2024, 1, 14, 11, 0),
        })
        response = self.client.patch(f'/api/sessions/{session.pk}/', {'name': 'Early'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Early')

        response = self.client.delete(f'/api/sessions/{session.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(f'/api/sessions/{session.pk}/').status_code, status.HTTP_404_NOT_FOUND)


class SessionDraftsAPITests(APITestCase):
    """Test the session creation wizard endpoint."""

    def setUp(self):
        self.client = APIClient()
        self.occasion = Occasion.objects.create(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )
        self.january = {
            'occasion': self.occasion.pk,
            'mode': 'bulk',
            'bulk_option': 'custom_range',
            'custom_start': '2024-01-01',
            'custom_end': '2024-01-31',
            'start_time': '09:00',
            'end_time': '11:00',
        }

    def test_generate_drafts(self):
        response = self.client.post('/api/sessions/drafts/', self.january, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['dates_read_only'])
        drafts = response.data['drafts']
        self.assertEqual([draft['date'] for draft in drafts], ['2024-01-07', '2024-01-14', '2024-01-21', '2024-01-28'])
        self.assertEqual(drafts[0]['name'], 'Sunday Service – January 7th, 2024')
        self.assertEqual(drafts[0]['date_label'], 'Sun, 07 Jan 2024')
        self.assertFalse(AttendanceSession.objects.exists())

    def test_validation_errors(self):
        response = self.client.post('/api/sessions/drafts/', {
            'occasion': self.occasion.pk,
            'date': '2024-01-10',
            'start_time': '09:00',
            'end_time': '11:00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['validation_errors'], [DATE_NOT_IN_PATTERN])

    def test_commit_then_conflict(self):
        data = dict(self.january, commit=True)
        response = self.client.post('/api/sessions/drafts/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['created']), 4)
        self.assertEqual(AttendanceSession.objects.count(), 4)

        response = self.client.post('/api/sessions/drafts/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['conflict']['mode'], 'bulk')
        self.assertEqual(len(response.data['conflict']['items']), 4)
        self.assertEqual(len(response.data['drafts']), 4)
        self.assertEqual(AttendanceSession.objects.count(), 4)

    def test_commit_single_one_off(self):
        one_off = Occasion.objects.create(name='Retreat')
        response = self.client.post('/api/sessions/drafts/', {
            'occasion': one_off.pk,
            'date': '2024-03-02',
            'base_name': 'Spring Retreat',
            'start_time': '10:00',
            'end_time': '16:00',
            'allowed_tags': ['leaders'],
            'commit': True,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        session = AttendanceSession.objects.get()
        self.assertEqual(session.name, 'Spring Retreat – March 2nd, 2024')
        self.assertEqual(session.allowed_tags, ['leaders'])
        self.assertTrue(session.is_open)


class ManagementCommandTests(TestCase):
    """Test management commands."""

    def test_generate_sessions_command(self):
        Occasion.objects.create(
            name='Sunday Service',
            recurrence_rule='FREQ=WEEKLY;BYDAY=SU',
            recurrence_start=date(2024, 1, 7),
        )
        Occasion.objects.create(name='Retreat')

        out = StringIO()
        call_command('generate_sessions', '--sessions=2', '--start=09:00', '--end=11:00', stdout=out)
        self.assertIn('Successfully generated 2 new session(s)', out.getvalue())
        self.assertEqual(AttendanceSession.objects.count(), 2)

        out = StringIO()
        call_command('generate_sessions', '--sessions=2', stdout=out)
        self.assertIn('Successfully generated 0 new session(s)', out.getvalue())
        self.assertEqual(AttendanceSession.objects.count(), 2)

    def test_generate_sessions_rejects_bad_clock(self):
        from django.core.management.base import CommandError

        with self.assertRaises(CommandError):
            call_command('generate_sessions', '--start=25:00', stdout=StringIO())
