# planning_api/core/date_utils.py
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Union

log = logging.getLogger(__name__)

DateLike = Union[str, int, float, datetime, None]


@lru_cache(maxsize=512)  # Event lists repeat the same boundaries a lot
def _parse_iso_string(value: str) -> Optional[str]:
    candidate = value
    # fromisoformat() before 3.11 rejects the "Z" suffix
    if candidate.endswith("Z") or candidate.endswith("z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate).isoformat()
    except ValueError:
        return None


def to_iso_datetime(value: DateLike) -> Optional[str]:
    """
    Normalizes a date-time value coming from the portal into an ISO-8601 string.

    Supports:
      - ISO-8601 strings (with or without offset, trailing 'Z' accepted)
      - datetime objects
      - epoch timestamps in milliseconds (ints/floats), interpreted as UTC

    Args:
        value: The raw value from a RawCalendarEntry.

    Returns:
        The ISO-8601 string, the trimmed original text when it cannot be parsed
        (e.g. a DOM time label like "08:00 - 10:00"), or None for empty input.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.isoformat()

    # bool is an int subclass; never a timestamp here
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            log.warning(f"Could not interpret numeric date value {value!r} as epoch milliseconds.")
            return str(value)

    text = str(value).strip()
    if not text:
        return None

    parsed = _parse_iso_string(text)
    if parsed is None:
        log.debug(f"Date value {text!r} is not ISO-8601. Keeping original text.")
        return text
    return parsed
