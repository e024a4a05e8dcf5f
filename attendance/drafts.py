"""
Draft sessions built from generated occurrence dates.

A draft is an unsaved session candidate identified by a local token. The
token is never sent to the database; it only addresses the draft while the
user reviews it.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Dict, Iterable, Iterator, List, Optional, Union

from django.utils import timezone

from .types import NAME_SEPARATOR, Location, SessionSettings


Clock = Union[time, datetime]

EDITABLE_FIELDS = frozenset(['name', 'start_time', 'end_time'])


@dataclass
class SessionTemplate:
    """Values shared by every draft of one generation run."""
    occasion_id: int
    occasion_name: str
    start_clock: Clock
    end_clock: Clock
    base_name: str = ''
    settings: SessionSettings = field(default_factory=SessionSettings)


@dataclass
class DraftSession:
    id: str
    occasion_id: int
    name: str
    start_time: datetime
    end_time: datetime
    is_open: bool = True
    allow_public_marking: bool = False
    proximity_required: bool = False
    location: Optional[Location] = None
    allowed_tags: Optional[List[str]] = None
    allowed_groups: Optional[List[str]] = None
    allowed_members: Optional[List[str]] = None
    marking_modes: dict = field(default_factory=dict)

    @property
    def session_date(self) -> date:
        return timezone.localtime(self.start_time).date()

    def to_payload(self) -> dict:
        """Persistence payload; the local token is left out."""
        return {
            'occasion_id': self.occasion_id,
            'name': self.name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'is_open': self.is_open,
            'allow_public_marking': self.allow_public_marking,
            'proximity_required': self.proximity_required,
            'location': self.location.to_dict() if self.location else None,
            'allowed_tags': self.allowed_tags,
            'allowed_groups': self.allowed_groups,
            'allowed_members': self.allowed_members,
            'marking_modes': dict(self.marking_modes),
        }


def build_draft(template: SessionTemplate, day: Union[date, datetime]) -> DraftSession:
    """
    Build one draft for ``day`` from ``template``.

    The template's clock-of-day (hours and minutes) is placed on ``day`` in
    the current timezone. Every call gets a fresh local token.
    """
    if isinstance(day, datetime):
        day = day.date()

    settings = template.settings

    return DraftSession(
        id=uuid.uuid4().hex,
        occasion_id=template.occasion_id,
        name=compute_session_name(template.occasion_name, template.base_name, day),
        start_time=align_clock(day, template.start_clock),
        end_time=align_clock(day, template.end_clock),
        is_open=settings.is_open,
        allow_public_marking=settings.allow_public_marking,
        proximity_required=settings.proximity_required,
        location=replace(settings.location) if settings.proximity_required and settings.location else None,
        allowed_tags=list(settings.allowed_tags) or None,
        allowed_groups=list(settings.allowed_groups) or None,
        allowed_members=list(settings.allowed_members) or None,
        marking_modes=dict(settings.marking_modes),
    )


def build_drafts(template: SessionTemplate, dates: Iterable[Union[date, datetime]]) -> List[DraftSession]:
    """One draft per date, in the order given."""
    return [build_draft(template, day) for day in dates]


def align_clock(day: date, clock: Clock) -> datetime:
    """Combine ``day`` with the hour and minute of ``clock``."""
    if isinstance(clock, datetime):
        if timezone.is_aware(clock):
            clock = timezone.localtime(clock)
        clock = clock.time()

    aligned = datetime.combine(day, time(clock.hour, clock.minute))
    return timezone.make_aware(aligned)


def compute_session_name(occasion_name: str, base_name: str, day: date) -> str:
    label = format_friendly_date(day)
    custom = (base_name or '').strip()
    if custom:
        return f'{custom}{NAME_SEPARATOR}{label}'
    parts = [(occasion_name or '').strip(), label]
    return NAME_SEPARATOR.join(part for part in parts if part)


def format_friendly_date(day: date) -> str:
    """Long date used in session names, e.g. "January 14th, 2024"."""
    return f'{day:%B} {_ordinal(day.day)}, {day.year}'


def format_date_label(day: date) -> str:
    """Compact date label, e.g. "Sun, 14 Jan 2024"."""
    return f'{day:%a}, {day.day:02d} {day:%b} {day.year}'


def _ordinal(number: int) -> str:
    if 10 <= number % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(number % 10, 'th')
    return f'{number}{suffix}'


class DraftSet:
    """
    Ordered collection of drafts keyed by their local token.

    ``replace`` discards every existing draft, including unsaved edits.
    """

    def __init__(self, drafts: Iterable[DraftSession] = (), dates_read_only: bool = False):
        self._drafts: Dict[str, DraftSession] = {}
        self.dates_read_only = dates_read_only
        self.replace(drafts, dates_read_only)

    def replace(self, drafts: Iterable[DraftSession], dates_read_only: Optional[bool] = None) -> None:
        self._drafts = {draft.id: draft for draft in drafts}
        if dates_read_only is not None:
            self.dates_read_only = dates_read_only

    def get(self, token: str) -> DraftSession:
        return self._drafts[token]

    def update(self, token: str, **changes) -> DraftSession:
        """
        Edit the name or times of one draft.

        Raises:
            KeyError: If no draft has this token
            ValueError: If a field is not editable, or a time moves to
                another day while dates are read-only
        """
        draft = self._drafts[token]

        not_editable = set(changes) - EDITABLE_FIELDS
        if not_editable:
            raise ValueError(f"Draft fields cannot be edited: {', '.join(sorted(not_editable))}")

        if self.dates_read_only:
            for field_name in ('start_time', 'end_time'):
                value = changes.get(field_name)
                if value is not None and timezone.localtime(value).date() != draft.session_date:
                    raise ValueError("Session dates are fixed by the occasion recurrence pattern")

        updated = replace(draft, **changes)
        self._drafts[token] = updated
        return updated

    def remove(self, token: str) -> Optional[DraftSession]:
        return self._drafts.pop(token, None)

    def clear(self) -> None:
        self._drafts = {}

    def payloads(self) -> List[dict]:
        return [draft.to_payload() for draft in self]

    def __iter__(self) -> Iterator[DraftSession]:
        return iter(list(self._drafts.values()))

    def __len__(self) -> int:
        return len(self._drafts)

    def __contains__(self, token) -> bool:
        return token in self._drafts
