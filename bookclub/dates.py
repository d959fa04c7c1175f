"""Best-effort parsing of the free-text dates members type into the lists."""
import re
from datetime import datetime, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Tried in order after ISO-8601; month names follow the active locale
_FORMATS = (
    "%B %Y",
    "%b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%d %B %Y",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%Y-%m",
    "%Y",
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _as_utc(value: datetime) -> datetime:
    # Offsets next to year 1 or 9999 overflow here
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_generic(text: str) -> Optional[datetime]:
    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _as_utc(datetime.fromisoformat(iso))
    except (ValueError, OverflowError):
        pass

    for fmt in _FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except (ValueError, OverflowError):
            continue
    return None


def _parse_month_year(text: str) -> Optional[datetime]:
    parts = re.split(r"[\s-]+", text)
    if len(parts) < 2:
        return None

    month = _MONTHS.get(parts[0].lower()[:3])
    year = re.match(r"\d{4}", parts[-1])
    if month is None or year is None:
        return None

    try:
        return datetime(int(year.group()), month, 1, tzinfo=timezone.utc)
    except (ValueError, OverflowError):
        return None


def parse_date(text: Optional[str]) -> datetime:
    """
    Turn a date label into a sortable instant.

    Handles ISO-8601 strings, common numeric and month-name layouts, and
    loose "Month Year" labels such as "Sept 2025" or "jan-2024".

    Args:
        text: Date label, possibly empty

    Returns:
        UTC instant, or EPOCH when the label cannot be understood
    """
    if not text or not text.strip():
        return EPOCH

    text = text.strip()
    parsed = _parse_generic(text) or _parse_month_year(text)
    return parsed if parsed is not None else EPOCH


def is_sentinel(value: datetime) -> bool:
    """True when value is the EPOCH placeholder for an unparsable date."""
    return value == EPOCH
