# planning_api/core/title_parser.py
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .constants import UNTITLED_COURSE

log = logging.getLogger(__name__)

# --- Line Classification Patterns ---
# Order inside each list does not matter; the slot priority (room, professor,
# course name, group) is what determines the output.
_UPPER = "A-ZÉÈÊËÀÂÄÙÛÜÔÖÏÎ"
_LOWER = "a-zéèêëàâäùûüôöïî"

ROOM_PATTERNS = [
    re.compile(r"^[A-Z]?\d{3}[A-Z]?$"),          # e.g. A301, 204, 301B
    re.compile(r"salle", re.IGNORECASE),
    re.compile(r"amphi", re.IGNORECASE),         # amphitheatre
    re.compile(r"labo", re.IGNORECASE),          # laboratory
    re.compile(r"^[A-Z]{1,3}[-\s]?\d{1,4}$"),    # e.g. B-201, TD3
]

PROFESSOR_PATTERNS = [
    re.compile(r"^(M\.|Mme|Mr|Pr|Dr)\s", re.IGNORECASE),  # civility prefix
    re.compile(rf"^[{_UPPER}][{_LOWER}]+\s[{_UPPER}]{{2,}}"),  # "Prénom NOM"
]


@dataclass(frozen=True)
class ParsedTitle:
    """Candidate fields extracted from a multi-line event title."""
    course_name: str
    room: Optional[str] = None
    professor: Optional[str] = None
    group: Optional[str] = None
    raw: str = ""


def split_title_lines(title: Optional[str]) -> List[str]:
    """Splits a title into its non-empty, trimmed lines."""
    if not title:
        return []
    return [line.strip() for line in title.split("\n") if line.strip()]


def _matches_any(line: str, patterns: List[re.Pattern]) -> bool:
    return any(p.search(line) for p in patterns)


def parse_event_title(title: Optional[str]) -> ParsedTitle:
    """
    Splits raw portal title text into course name, room, professor and group.

    Each line is assigned to the first still-empty slot it qualifies for:
    room (room-shaped line), professor (civility prefix or "Prénom NOM"),
    course name, then group. Lines past those four slots are ignored.

    Fallbacks:
      - no course name assigned -> first line, or "Sans titre" without lines
      - no professor assigned and more than two lines -> last line

    Args:
        title: The raw title, possibly multi-line, possibly None.

    Returns:
        A ParsedTitle whose `raw` is always the original, unsplit title.
    """
    lines = split_title_lines(title)
    if not lines:
        return ParsedTitle(course_name=UNTITLED_COURSE, raw=title or "")

    course_name: Optional[str] = None
    room: Optional[str] = None
    professor: Optional[str] = None
    group: Optional[str] = None

    for line in lines:
        if room is None and _matches_any(line, ROOM_PATTERNS):
            room = line
        elif professor is None and _matches_any(line, PROFESSOR_PATTERNS):
            professor = line
        elif course_name is None:
            course_name = line
        elif group is None:
            group = line
        # Anything else is dropped

    if course_name is None:
        course_name = lines[0]

    if professor is None and len(lines) > 2:
        professor = lines[-1]

    log.debug(f"Parsed title {lines!r} -> course={course_name!r}, room={room!r}, professor={professor!r}, group={group!r}")
    return ParsedTitle(
        course_name=course_name,
        room=room,
        professor=professor,
        group=group,
        raw=title,
    )
