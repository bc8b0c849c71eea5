# planning_api/core/normalizer.py
import logging
import uuid
from typing import Iterable, List

from .classifier import get_event_type
from .date_utils import to_iso_datetime
from .title_parser import parse_event_title
from ..models.models import NormalizedEvent, RawCalendarEntry

log = logging.getLogger(__name__)


def _synthetic_id() -> str:
    return uuid.uuid4().hex[:9]


def normalize_event(entry: RawCalendarEntry) -> NormalizedEvent:
    """
    Turns a single raw entry into the public event schema.

    Args:
        entry: A RawCalendarEntry produced by an extraction strategy.

    Returns:
        An immutable NormalizedEvent.
    """
    parsed = parse_event_title(entry.title)
    return NormalizedEvent(
        id=entry.id or _synthetic_id(),
        title=parsed.course_name,
        room=parsed.room,
        professor=parsed.professor,
        group=parsed.group,
        start=to_iso_datetime(entry.start),
        end=to_iso_datetime(entry.end),
        type=get_event_type(entry.class_names, entry.title),
        raw_title=parsed.raw,
        all_day=entry.all_day,
    )


def normalize_events(entries: Iterable[RawCalendarEntry]) -> List[NormalizedEvent]:
    """
    Normalizes raw entries, dropping placeholder slots (is_empty / is_break).

    The output keeps the order the extraction strategy produced; sorting for
    display is left to consumers.
    """
    events: List[NormalizedEvent] = []
    skipped = 0
    for entry in entries:
        if entry.is_empty or entry.is_break:
            skipped += 1
            continue
        events.append(normalize_event(entry))

    if skipped:
        log.debug(f"Dropped {skipped} empty/break entries during normalization.")
    return events
