"""
Scheduling conflict messages.

Session creation reports overlaps as a prefixed, delimiter-joined message.
The message is parsed once, here, into a ConflictErrorInfo; nothing else
inspects the raw text.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .types import (
    BULK_CONFLICT_PREFIX,
    BULK_CONFLICT_SEPARATOR,
    SINGLE_CONFLICT_PREFIX,
    SINGLE_CONFLICT_SEPARATOR,
)

SINGLE = 'single'
BULK = 'bulk'
OTHER = 'other'


@dataclass(frozen=True)
class ConflictErrorInfo:
    mode: str
    items: List[str] = field(default_factory=list)

    @property
    def is_conflict(self) -> bool:
        return self.mode in (SINGLE, BULK)

    @property
    def title(self) -> str:
        if self.mode == SINGLE:
            return 'Conflicting session detected'
        return 'Conflicting sessions detected'

    def to_dict(self) -> dict:
        return {'mode': self.mode, 'items': list(self.items)}


def format_conflict_message(mode: str, items: List[str]) -> str:
    """Build the message parsed by ``parse_conflict_error``."""
    if mode == SINGLE:
        return f'{SINGLE_CONFLICT_PREFIX} {SINGLE_CONFLICT_SEPARATOR.join(items)}'
    return f'{BULK_CONFLICT_PREFIX} {BULK_CONFLICT_SEPARATOR.join(items)}'


def parse_conflict_error(message: Optional[str]) -> Optional[ConflictErrorInfo]:
    """
    Parse a failed-creation message into its conflicting items.

    Returns None when the message is not a conflict report.
    """
    if not message:
        return None

    trimmed = message.strip()

    if trimmed.startswith(SINGLE_CONFLICT_PREFIX):
        details = trimmed[len(SINGLE_CONFLICT_PREFIX):].strip()
        return ConflictErrorInfo(mode=SINGLE, items=_split_items(details, SINGLE_CONFLICT_SEPARATOR))

    if trimmed.startswith(BULK_CONFLICT_PREFIX):
        details = trimmed[len(BULK_CONFLICT_PREFIX):].strip()
        return ConflictErrorInfo(mode=BULK, items=_split_items(details, BULK_CONFLICT_SEPARATOR))

    return None


def classify_failure(message: Optional[str]) -> ConflictErrorInfo:
    """Like ``parse_conflict_error`` but tags non-conflicts as ``other``."""
    info = parse_conflict_error(message)
    if info is None:
        return ConflictErrorInfo(mode=OTHER, items=[])
    return info


def _split_items(details: str, separator: str) -> List[str]:
    return [item.strip() for item in details.split(separator) if item.strip()]


class ConflictReport:
    """
    Conflict panel state: idle until a conflict is reported, idle again
    after it is dismissed or a later generate/submit succeeds.
    """

    def __init__(self):
        self.info: Optional[ConflictErrorInfo] = None

    @property
    def is_reported(self) -> bool:
        return self.info is not None

    def report(self, info: ConflictErrorInfo) -> None:
        self.info = info

    def dismiss(self) -> None:
        self.info = None

    clear = dismiss
