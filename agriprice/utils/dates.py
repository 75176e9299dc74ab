"""Date helpers shared by the resolver, provider and trend code."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Iterator, List, Optional

# Order matters: ISO first, then the provider's day-first formats
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")

PROVIDER_DATE_FORMAT = "%d-%m-%Y"


def today() -> date:
    return date.today()


def parse_date(value: Any) -> Optional[date]:
    """Parse a calendar date from the formats the provider and stores emit.

    Returns None for empty or unparsable input instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # Timestamps such as "2024-06-15T00:00:00"
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def to_provider_date(value: date) -> str:
    """Format a date the way the provider's arrival_date filter expects."""
    return value.strftime(PROVIDER_DATE_FORMAT)


def days_ago(days: int, reference: Optional[date] = None) -> date:
    return (reference or today()) - timedelta(days=days)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def chunked(items: List[Any], size: int) -> Iterator[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]
