"""Date helpers used by templates and create_work_item.

Relative dates ("+3 days") and the built-in placeholders ({today},
{currentMonthEnd}, ...) are always computed from the execution time passed
in, never from a clock read deep inside a resolver.
"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Optional

from core.exceptions import ResolutionError

RELATIVE_DATE_PATTERN = re.compile(r"^\+\s*(\d+)\s*(?:d|days?)?$", re.IGNORECASE)

DATE_PLACEHOLDERS = ("today", "yesterday", "currentMonthStart", "currentMonthEnd")


def date_placeholders(now: datetime) -> dict[str, str]:
    """ISO dates for the built-in placeholders, relative to `now`."""
    today = now.date()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return {
        "today": today.isoformat(),
        "yesterday": (today - timedelta(days=1)).isoformat(),
        "currentMonthStart": today.replace(day=1).isoformat(),
        "currentMonthEnd": today.replace(day=last_day).isoformat(),
    }


def resolve_relative_date(text: str, now: datetime) -> Optional[datetime]:
    """Turn "+N days" into `now + N days`.

    Returns None when `text` is not a relative expression at all.

    Raises:
        ResolutionError: If `text` starts with "+" but is not a valid offset
    """
    candidate = text.strip()
    if not candidate.startswith("+"):
        return None
    match = RELATIVE_DATE_PATTERN.match(candidate)
    if not match:
        raise ResolutionError(f"Invalid relative date '{text}', expected '+N days'")
    try:
        return now + timedelta(days=int(match.group(1)))
    except OverflowError:
        raise ResolutionError(f"Invalid relative date '{text}': offset out of range") from None


def parse_due_date(text: str, now: datetime) -> date:
    """Parse a due date given either as "+N days" or as an ISO date/datetime."""
    relative = resolve_relative_date(text, now)
    if relative is not None:
        return relative.date()
    candidate = text.strip()
    try:
        return date.fromisoformat(candidate)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(candidate.replace("Z", "+00:00")).date()
    except ValueError:
        raise ResolutionError(f"Invalid due date '{text}'") from None
