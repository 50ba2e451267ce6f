"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Pagination offset
- JSON-safe serialization of run state
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_offset(page: int = 1, per_page: int = 20) -> int:
    """
    Calculate database offset from page and per_page values.

    Args:
        page: Page number (1-indexed)
        per_page: Items per page

    Returns:
        Offset for database queries
    """
    return (page - 1) * per_page


def safe_serialize(value: Any) -> Any:
    """Convert run state into values that survive a JSON column.

    Datetimes and dates become ISO strings, Decimals become floats, tuples
    and sets become lists. Anything else unknown is stringified.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(k): safe_serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [safe_serialize(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)
