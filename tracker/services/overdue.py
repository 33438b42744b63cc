"""Overdue-day derivation.

Overdue days are never stored. They are recomputed from the item's due date
(or a fallback of 14 days after creation) every time an item is read.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

FALLBACK_DUE_DAYS = 14


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601-ish string into an aware UTC datetime.

    Accepts date-only values (midnight UTC), a trailing ``Z``, explicit
    offsets and a space instead of ``T``. Naive values are taken as UTC.
    Returns None for empty or unparseable input, and for values that fall
    outside the representable range once moved to UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def effective_due(due_at: Optional[str], created_at: Optional[str]) -> Optional[datetime]:
    """Explicit due date if it parses, else creation + 14 days, else None."""
    due = parse_timestamp(due_at)
    if due is not None:
        return due
    created = parse_timestamp(created_at)
    if created is None:
        return None
    try:
        return created + timedelta(days=FALLBACK_DUE_DAYS)
    except OverflowError:
        return None


def _utc_day(dt: datetime) -> date:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date()


def overdue_days(due_at: Optional[str], created_at: Optional[str], now: datetime) -> int:
    """Signed whole days from the effective due date to ``now``.

    Days are counted between UTC calendar dates, so the result does not depend
    on the server's timezone. Positive means overdue; zero means due today.
    """
    target = effective_due(due_at, created_at)
    if target is None:
        return 0
    return (_utc_day(now) - _utc_day(target)).days
