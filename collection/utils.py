import calendar
import re
from datetime import date, datetime
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_SHORT_MONTH_RE = re.compile(r"^([A-Za-z]{3})-(\d{2})$")
_MONTHS = {name: index for index, name in enumerate(calendar.month_abbr) if name}


def is_valid_period(period) -> bool:
    return isinstance(period, str) and bool(_PERIOD_RE.match(period))


def normalize_period(value) -> Optional[str]:
    """Coerce "2025-06", "2025-06-05", "Jun-25" or a date into a "YYYY-MM" key."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"
    value = str(value).strip()
    if is_valid_period(value):
        return value
    if len(value) >= 10 and is_valid_period(value[:7]):
        return value[:7]
    match = _SHORT_MONTH_RE.match(value)
    if match and match.group(1).title() in _MONTHS:
        return f"20{match.group(2)}-{_MONTHS[match.group(1).title()]:02d}"
    return None


def month_range(period: str) -> Tuple[date, date]:
    if not is_valid_period(period):
        raise ValueError(f"Invalid period: {period!r}")
    year, month = (int(part) for part in period.split("-"))
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def period_demand_date(period: str) -> date:
    """EMI demand date for a period; installments fall due on the 5th."""
    start, _ = month_range(period)
    return start.replace(day=5)


def parse_date(value) -> Optional[date]:
    """Return a date for a date/datetime/ISO string, None for anything unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def clean_ids(ids: Iterable) -> List[str]:
    """Drop blank ids and duplicates, keeping first-seen order."""
    seen = {}
    for value in ids or ():
        if isinstance(value, str) and value.strip():
            seen.setdefault(value.strip(), None)
    return list(seen)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
