"""
Service layer for occasion and session business logic.

Services own persistence and conflict detection. Overlapping sessions are
reported with the same prefixed messages the session creation wizard parses.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from django.db import transaction
from django.utils import timezone

from .conflicts import BULK, SINGLE, ConflictErrorInfo, format_conflict_message
from .drafts import Clock, SessionTemplate, build_drafts
from .models import AttendanceSession, Occasion
from .ranges import BulkDurationOption, CountRequest, resolve_bulk_option
from .recurrence import does_date_match, generate_next_occurrences, generate_occurrences, parse_rrule
from .types import (
    DEFAULT_MARKING_MODES,
    OccasionUpdateData,
    SessionSettings,
    SessionUpdateData,
)

logger = logging.getLogger(__name__)


class SessionConflictError(ValueError):
    """Raised when sessions would overlap existing ones."""

    def __init__(self, mode: str, items: List[str]):
        self.info = ConflictErrorInfo(mode=mode, items=list(items))
        super().__init__(format_conflict_message(mode, items))


@transaction.atomic
def create_occasion(
    name: str,
    recurrence_rule: str = '',
    recurrence_start: Optional[date] = None,
    description: str = '',
    default_duration_minutes: Optional[int] = None
) -> Occasion:
    """
    Create an occasion.

    Args:
        name: Occasion name
        recurrence_rule: RRULE text, blank for one-off occasions
        recurrence_start: Date the rule counts from (defaults to today)
        description: Occasion description
        default_duration_minutes: Suggested session length

    Returns:
        Created Occasion instance

    Raises:
        ValueError: If the recurrence rule cannot be parsed
    """
    recurrence_rule = (recurrence_rule or '').strip()
    if recurrence_rule:
        recurrence_start = recurrence_start or timezone.localdate()
        parse_rrule(recurrence_rule, start_reference=recurrence_start)

    if default_duration_minutes is not None:
        _validate_duration(default_duration_minutes)

    occasion = Occasion.objects.create(
        name=name,
        description=description,
        recurrence_rule=recurrence_rule,
        recurrence_start=recurrence_start,
        default_duration_minutes=default_duration_minutes,
        is_active=True
    )
    logger.info("Created occasion %s (%s)", occasion.pk, occasion.recurrence_label)
    return occasion


@transaction.atomic
def update_occasion(occasion: Occasion, update_data: OccasionUpdateData) -> Occasion:
    """
    Update an occasion. Existing sessions are left as they are.

    Raises:
        ValueError: If the new recurrence rule cannot be parsed
    """
    if update_data.recurrence_rule is not None and update_data.recurrence_rule.strip():
        anchor = update_data.recurrence_start or occasion.anchor_date or timezone.localdate()
        parse_rrule(update_data.recurrence_rule, start_reference=anchor)

    if update_data.default_duration_minutes is not None:
        _validate_duration(update_data.default_duration_minutes)

    fields_to_update = {
        'name': update_data.name,
        'description': update_data.description,
        'recurrence_rule': update_data.recurrence_rule.strip() if update_data.recurrence_rule is not None else None,
        'recurrence_start': update_data.recurrence_start,
        'default_duration_minutes': update_data.default_duration_minutes,
        'is_active': update_data.is_active,
    }
    _apply_field_updates(occasion, fields_to_update)

    occasion.save()
    return occasion


@transaction.atomic
def delete_occasion(occasion: Occasion) -> bool:
    """
    Delete an occasion, or deactivate it when sessions already exist.

    Returns:
        True if the occasion was deleted, False if it was deactivated
    """
    if occasion.sessions.live().exists():
        occasion.is_active = False
        occasion.save()
        return False

    occasion.delete()
    return True


def preview_occurrences(
    occasion: Occasion,
    option: BulkDurationOption,
    today: date,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None
) -> List[date]:
    """
    Dates a bulk option selects for a recurring occasion.

    Raises:
        ValueError: If the occasion does not recur, or custom_range lacks
            its dates
    """
    rule = occasion.get_recurrence_rule()
    if rule is None:
        raise ValueError("Occasion does not have a recurrence rule")

    request = resolve_bulk_option(option, today, custom_start, custom_end)
    if isinstance(request, CountRequest):
        return generate_next_occurrences(rule, request.count, today)
    return generate_occurrences(rule, request.start, request.end)


def occasion_matches_date(occasion: Occasion, day: date) -> bool:
    """Whether a session may be created on ``day``; one-off occasions accept any date."""
    rule = occasion.get_recurrence_rule()
    if rule is None:
        return True
    return does_date_match(rule, day)


@transaction.atomic
def create_session(payload: dict) -> AttendanceSession:
    """
    Create a single session.

    Args:
        payload: Session fields as produced by DraftSession.to_payload()

    Returns:
        Created AttendanceSession instance

    Raises:
        SessionConflictError: If the session overlaps an existing one
        ValueError: If the payload is invalid
    """
    session = _build_session(payload)

    conflicts = list(_find_conflicts(session))
    if conflicts:
        logger.warning(
            "Rejected session for occasion %s: %d conflict(s)",
            session.occasion_id, len(conflicts)
        )
        raise SessionConflictError(SINGLE, [_describe_session(other) for other in conflicts])

    session.save()
    logger.info("Created session %s for occasion %s", session.pk, session.occasion_id)
    return session


@transaction.atomic
def bulk_create_sessions(payloads: Iterable[dict]) -> List[AttendanceSession]:
    """
    Create several sessions, all or nothing.

    Conflicts are checked against stored sessions and between the new
    sessions themselves.

    Raises:
        SessionConflictError: If any session overlaps another
        ValueError: If no payloads are given or one is invalid
    """
    sessions = [_build_session(payload) for payload in payloads]
    if not sessions:
        raise ValueError("At least one session is required")

    conflicts = []
    for index, session in enumerate(sessions):
        for other in _find_conflicts(session):
            _append_unique(conflicts, _describe_session(other))
        for earlier in sessions[:index]:
            if earlier.occasion_id == session.occasion_id and _overlaps(earlier, session):
                _append_unique(conflicts, _describe_session(session))

    if conflicts:
        logger.warning("Rejected bulk creation of %d session(s): %d conflict(s)", len(sessions), len(conflicts))
        raise SessionConflictError(BULK, conflicts)

    for session in sessions:
        session.save()

    logger.info("Created %d session(s)", len(sessions))
    return sessions


@transaction.atomic
def update_session(session: AttendanceSession, update_data: SessionUpdateData) -> AttendanceSession:
    """
    Update a session.

    Raises:
        SessionConflictError: If new times overlap another session
        ValueError: If the end time is not after the start time
    """
    fields_to_update = {
        'name': update_data.name,
        'start_time': update_data.start_time,
        'end_time': update_data.end_time,
        'is_open': update_data.is_open,
        'allow_public_marking': update_data.allow_public_marking,
    }
    _apply_field_updates(session, fields_to_update)
    _validate_times(session.start_time, session.end_time)

    if update_data.start_time is not None or update_data.end_time is not None:
        conflicts = list(_find_conflicts(session))
        if conflicts:
            session.refresh_from_db()
            raise SessionConflictError(SINGLE, [_describe_session(other) for other in conflicts])

    session.save()
    return session


@transaction.atomic
def delete_session(session: AttendanceSession) -> AttendanceSession:
    """
    Soft-delete a session.

    Raises:
        ValueError: If the session is already deleted
    """
    if session.is_deleted:
        raise ValueError("Session is already deleted")

    session.is_deleted = True
    session.save()
    return session


def get_sessions_in_range(
    start_datetime: datetime,
    end_datetime: datetime,
    occasion: Optional[Occasion] = None
) -> List[AttendanceSession]:
    """
    Get live sessions starting within a datetime range.

    Raises:
        ValueError: If start_datetime >= end_datetime
    """
    if start_datetime >= end_datetime:
        raise ValueError("Start datetime must be before end datetime")

    queryset = AttendanceSession.objects.live().in_range(start_datetime, end_datetime)

    if occasion is not None:
        queryset = queryset.for_occasion(occasion)

    return list(queryset.select_related('occasion'))


def materialize_sessions(
    occasion: Occasion,
    count: int,
    start_clock: Clock,
    end_clock: Clock,
    today: date,
    settings: Optional[SessionSettings] = None
) -> List[AttendanceSession]:
    """
    Create the next ``count`` sessions of a recurring occasion.

    Dates that already have a session starting at the same time are skipped,
    so repeated runs do not create duplicates.

    Returns:
        List of created AttendanceSession instances

    Raises:
        SessionConflictError: If a new session overlaps an existing one
    """
    rule = occasion.get_recurrence_rule()
    if rule is None or not occasion.is_active:
        return []

    dates = generate_next_occurrences(rule, count, today)
    template = SessionTemplate(
        occasion_id=occasion.pk,
        occasion_name=occasion.name,
        start_clock=start_clock,
        end_clock=end_clock,
        settings=settings or SessionSettings(),
    )
    drafts = build_drafts(template, dates)

    existing_starts = set(
        AttendanceSession.objects.live().for_occasion(occasion).filter(
            start_time__in=[draft.start_time for draft in drafts]
        ).values_list('start_time', flat=True)
    )

    payloads = [draft.to_payload() for draft in drafts if draft.start_time not in existing_starts]
    if not payloads:
        return []

    return bulk_create_sessions(payloads)


def _build_session(payload: dict) -> AttendanceSession:
    """Create an unsaved session from a payload."""
    occasion = _get_occasion(payload.get('occasion_id'))
    if not occasion.is_active:
        raise ValueError(f'Occasion "{occasion.name}" is not active')

    start_time = payload.get('start_time')
    end_time = payload.get('end_time')
    _validate_times(start_time, end_time)

    proximity_required = bool(payload.get('proximity_required', False))
    location = payload.get('location')
    if proximity_required and not location:
        raise ValueError("Location is required when proximity checking is enabled")

    marking_modes = dict(DEFAULT_MARKING_MODES)
    marking_modes.update(payload.get('marking_modes') or {})

    return AttendanceSession(
        occasion=occasion,
        name=payload.get('name') or '',
        start_time=start_time,
        end_time=end_time,
        is_open=bool(payload.get('is_open', False)),
        allow_public_marking=bool(payload.get('allow_public_marking', False)),
        proximity_required=proximity_required,
        location=location,
        allowed_tags=payload.get('allowed_tags') or None,
        allowed_groups=payload.get('allowed_groups') or None,
        allowed_members=payload.get('allowed_members') or None,
        marking_modes=marking_modes,
    )


def _get_occasion(occasion_id) -> Occasion:
    if occasion_id is None:
        raise ValueError("Occasion is required")
    try:
        return Occasion.objects.get(pk=occasion_id)
    except Occasion.DoesNotExist:
        raise ValueError(f"Occasion {occasion_id} does not exist")


def _find_conflicts(session: AttendanceSession):
    """Stored live sessions of the same occasion overlapping ``session``."""
    queryset = AttendanceSession.objects.live().for_occasion(session.occasion_id).overlapping(
        session.start_time, session.end_time
    )
    if session.pk:
        queryset = queryset.exclude(pk=session.pk)
    return queryset.select_related('occasion')


def _overlaps(first: AttendanceSession, second: AttendanceSession) -> bool:
    return first.start_time < second.end_time and second.start_time < first.end_time


def _describe_session(session: AttendanceSession) -> str:
    """Conflict item text, e.g. "Sunday Service (2024-01-14 09:00–11:00)"."""
    start = timezone.localtime(session.start_time)
    end = timezone.localtime(session.end_time)
    name = session.name or session.occasion.name
    return f"{name} ({start:%Y-%m-%d %H:%M}–{end:%H:%M})"


def _append_unique(items: List[str], item: str) -> None:
    if item not in items:
        items.append(item)


def _validate_times(start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
    """Validate a session time span."""
    if start_time is None or end_time is None:
        raise ValueError("Start and end time are required")

    if end_time <= start_time:
        raise ValueError("End time must be after start time")


def _validate_duration(duration_minutes: int) -> None:
    """Validate duration is positive."""
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None (DRY helper)."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)
