# planning_api/core/classifier.py
import re
from functools import lru_cache
from typing import Optional

from ..models.models import EventType


@lru_cache(maxsize=16)
def _token_pattern(token: str) -> re.Pattern:
    # Keyword at the start of a word: "TD Algo" and "Algo TD1" match, "std" does not
    return re.compile(rf"(?:^|\s){re.escape(token)}")


def _has_token(text: str, token: str) -> bool:
    return bool(_token_pattern(token).search(text))


def get_event_type(class_names: Optional[str], title: Optional[str]) -> EventType:
    """
    Maps a widget class-name string and a title to an event category.

    Rules are evaluated in priority order and the first match wins:
    exam, td, tp, cm, projet, reunion; anything else is "cours".
    Matching is case-insensitive.
    """
    cl = (class_names or "").casefold()
    t = (title or "").casefold()

    if "epreuve" in cl or "exam" in cl or "examen" in t or "partiel" in t or "épreuve" in t:
        return "exam"
    if _has_token(t, "td") or "td" in cl:
        return "td"
    if _has_token(t, "tp") or "tp" in cl:
        return "tp"
    if _has_token(t, "cm") or "cours magistral" in t or "cm" in cl:
        return "cm"
    if "projet" in t or "projet" in cl:
        return "projet"
    if "réunion" in t or "reunion" in t:
        return "reunion"
    return "cours"
