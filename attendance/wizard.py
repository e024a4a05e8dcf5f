"""
Session creation wizard.

Holds the state of one session creation run: the selected occasion, how
dates are chosen, the shared session template, the generated drafts and any
validation or conflict feedback. Generation is synchronous; submission hands
payloads to the persistence callables it is given.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from dateutil.parser import isoparse
from django.utils import timezone

from .conflicts import ConflictReport, parse_conflict_error
from .drafts import Clock, DraftSession, DraftSet, SessionTemplate, build_drafts
from .ranges import BulkDurationOption, CountRequest, resolve_bulk_option
from .recurrence import does_date_match, generate_next_occurrences, generate_occurrences
from .serializers import SessionPayloadSerializer
from .types import DEFAULT_SESSION_HOURS, OccasionInfo, SessionSettings

logger = logging.getLogger(__name__)

MISSING_OCCASION = 'Please select an occasion.'
MISSING_DATE = 'Please select a date.'
DATE_NOT_IN_PATTERN = 'Selected date does not match the occasion recurrence pattern.'
MISSING_MANUAL_DATES = 'Add at least one date for bulk creation.'
NO_VALID_DATES = 'No valid dates selected.'
MISSING_CUSTOM_RANGE = 'Please select a custom start and end date.'
NO_MATCHING_DATES = 'No matching dates found for the selected range.'
NO_DRAFTS = 'Generate sessions before creating them.'


class WizardMode(str, Enum):
    SINGLE = 'single'
    BULK = 'bulk'


DateInput = Union[date, datetime, str]


class SessionCreationWizard:
    """
    Turns an occasion plus a date selection into draft sessions.

    A failed ``generate`` leaves the previous drafts in place; a successful
    one replaces all of them.
    """

    def __init__(
        self,
        occasion: Optional[OccasionInfo] = None,
        mode: Union[WizardMode, str] = WizardMode.SINGLE,
        start_clock: Optional[Clock] = None,
        end_clock: Optional[Clock] = None,
        base_name: str = '',
        settings: Optional[SessionSettings] = None
    ):
        self.occasion = occasion
        self.mode = WizardMode(mode)

        self.single_date: Optional[DateInput] = None
        self.bulk_option = BulkDurationOption.NEXT_1_SESSION
        self.custom_start: Optional[DateInput] = None
        self.custom_end: Optional[DateInput] = None
        self.manual_dates: List[DateInput] = []

        if start_clock is None:
            start_clock = timezone.localtime().replace(second=0, microsecond=0)
        if end_clock is None:
            end_clock = _add_hours(start_clock, DEFAULT_SESSION_HOURS)
        self.start_clock = start_clock
        self.end_clock = end_clock
        self.base_name = base_name
        self.settings = settings or SessionSettings()

        self.drafts = DraftSet()
        self.validation_errors: List[str] = []
        self.conflict = ConflictReport()

    @property
    def is_recurring(self) -> bool:
        return self.occasion is not None and self.occasion.is_recurring

    @property
    def template(self) -> SessionTemplate:
        return SessionTemplate(
            occasion_id=self.occasion.id,
            occasion_name=self.occasion.name,
            start_clock=self.start_clock,
            end_clock=self.end_clock,
            base_name=self.base_name,
            settings=self.settings,
        )

    def suggest_single_date(self, today: date) -> Optional[date]:
        """Next occurrence on or after ``today`` for recurring occasions."""
        if not self.is_recurring:
            return None
        upcoming = generate_next_occurrences(self.occasion.rule, 1, today)
        return upcoming[0] if upcoming else None

    def generate(self, today: date) -> bool:
        """
        Build drafts for the current selection.

        Args:
            today: Reference day for presets and "next N sessions"

        Returns:
            True when drafts were generated, False when validation failed
            (see ``validation_errors``)
        """
        self.validation_errors = []

        dates, errors = self._resolve_dates(today)
        if errors:
            self.validation_errors = errors
            return False

        self.drafts.replace(build_drafts(self.template, dates), dates_read_only=self.is_recurring)
        self.conflict.clear()

        logger.debug(
            "Generated %d draft session(s) for occasion %s",
            len(self.drafts), self.occasion.id
        )
        return True

    def _resolve_dates(self, today: date) -> Tuple[List[date], List[str]]:
        if self.occasion is None:
            return [], [MISSING_OCCASION]

        if self.mode == WizardMode.SINGLE:
            return self._resolve_single_date()

        if not self.is_recurring:
            return self._resolve_manual_dates()

        return self._resolve_recurring_dates(today)

    def _resolve_single_date(self) -> Tuple[List[date], List[str]]:
        day = _coerce_date(self.single_date)
        if day is None:
            return [], [MISSING_DATE]

        if self.is_recurring and not does_date_match(self.occasion.rule, day):
            return [], [DATE_NOT_IN_PATTERN]

        return [day], []

    def _resolve_manual_dates(self) -> Tuple[List[date], List[str]]:
        if not self.manual_dates:
            return [], [MISSING_MANUAL_DATES]

        dates = sorted({day for day in map(_coerce_date, self.manual_dates) if day is not None})
        if not dates:
            return [], [NO_VALID_DATES]

        return dates, []

    def _resolve_recurring_dates(self, today: date) -> Tuple[List[date], List[str]]:
        rule = self.occasion.rule

        try:
            request = resolve_bulk_option(
                self.bulk_option,
                today,
                custom_start=_coerce_date(self.custom_start),
                custom_end=_coerce_date(self.custom_end),
            )
        except ValueError:
            return [], [MISSING_CUSTOM_RANGE]

        if isinstance(request, CountRequest):
            occurrences = generate_next_occurrences(rule, request.count, today)
        else:
            occurrences = generate_occurrences(rule, request.start, request.end)

        if not occurrences:
            return [], [NO_MATCHING_DATES]

        return occurrences, []

    def update_draft(self, token: str, **changes) -> DraftSession:
        return self.drafts.update(token, **changes)

    def remove_draft(self, token: str) -> Optional[DraftSession]:
        return self.drafts.remove(token)

    def dismiss_conflict(self) -> None:
        self.conflict.dismiss()

    def submit(
        self,
        create_one: Callable[[dict], object],
        create_many: Callable[[List[dict]], Iterable[object]]
    ) -> Optional[Dict[str, int]]:
        """
        Persist the drafts.

        One draft goes through ``create_one``, several through
        ``create_many``. Both return objects carrying the persisted ``id``.

        Returns:
            Mapping of local draft token to persisted id on success; None when
            validation failed or a scheduling conflict was reported

        Raises:
            Exception: Any non-conflict failure from the persistence callables,
                unchanged; drafts are kept
        """
        drafts = list(self.drafts)
        if not drafts:
            self.validation_errors = [NO_DRAFTS]
            return None

        self.validation_errors = validate_drafts(drafts)
        if self.validation_errors:
            return None

        self.conflict.clear()
        payloads = self.drafts.payloads()

        try:
            if len(payloads) == 1:
                created = [create_one(payloads[0])]
            else:
                created = list(create_many(payloads))
        except Exception as exc:
            info = parse_conflict_error(str(exc))
            if info is None:
                raise
            self.conflict.report(info)
            logger.info("Session submission hit %d conflict(s)", len(info.items))
            return None

        persisted = {draft.id: session.id for draft, session in zip(drafts, created)}
        self.drafts.clear()
        return persisted


def validate_drafts(drafts: Iterable[DraftSession]) -> List[str]:
    """Check each draft's payload; one "Session <n>: <issue>" entry per bad draft."""
    errors = []
    for index, draft in enumerate(drafts, start=1):
        serializer = SessionPayloadSerializer(data=draft.to_payload())
        if not serializer.is_valid():
            errors.append(f'Session {index}: {_first_error(serializer.errors)}')
    return errors


def _first_error(errors) -> str:
    if isinstance(errors, dict):
        for value in errors.values():
            return _first_error(value)
        return 'Invalid data'
    if isinstance(errors, (list, tuple)):
        return _first_error(errors[0]) if errors else 'Invalid data'
    return str(errors)


def _coerce_date(value: Optional[DateInput]) -> Optional[date]:
    """Accept dates, datetimes and ISO strings; anything else is None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except (ValueError, OverflowError):
        return None


def _add_hours(clock: Clock, hours: int) -> Clock:
    if isinstance(clock, datetime):
        return clock + timedelta(hours=hours)
    shifted = datetime.combine(date.min, clock) + timedelta(hours=hours)
    return shifted.time()
