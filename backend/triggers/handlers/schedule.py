"""Schedule trigger handler.

Schedules are standard 5-field cron expressions. The workflow builder stores
either a raw `cron` or its frequency model (`frequency`, `time`, `day`),
which is converted here. The poller in worker/tasks asks `is_due()` once a
minute; the expressions themselves are evaluated with croniter.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from core.constants import ScheduleFrequency, TriggerType
from core.exceptions import ValidationError
from core.utils import ensure_utc
from triggers.base import BaseTriggerHandler, TriggerEvent

logger = logging.getLogger(__name__)

_WEEKDAYS = {
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
}


def frequency_to_cron(frequency: str, time: Optional[str] = None, day: Any = None) -> str:
    """Convert the builder's frequency model into a cron expression.

    Args:
        frequency: hourly, daily, weekly or monthly
        time: "HH:MM" (defaults to 00:00; only the minute is used for hourly)
        day: weekday (0-6 or name, default Sunday) for weekly,
            day of month (default 1) for monthly

    Raises:
        ValidationError: If the frequency, time or day is not understood
    """
    try:
        freq = ScheduleFrequency(str(frequency).lower())
    except ValueError:
        raise ValidationError(f"Unsupported schedule frequency: {frequency}") from None

    hour, minute = _parse_time(time or "00:00")

    if freq == ScheduleFrequency.HOURLY:
        return f"{minute} * * * *"
    if freq == ScheduleFrequency.DAILY:
        return f"{minute} {hour} * * *"
    if freq == ScheduleFrequency.WEEKLY:
        return f"{minute} {hour} * * {_parse_weekday(day)}"
    return f"{minute} {hour} {_parse_month_day(day)} * *"


def _parse_time(value: str) -> tuple[int, int]:
    try:
        hour_text, minute_text = value.strip().split(":")[:2]
        hour, minute = int(hour_text), int(minute_text)
    except ValueError:
        raise ValidationError(f"Invalid schedule time '{value}', expected HH:MM") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(f"Invalid schedule time '{value}'")
    return hour, minute


def _parse_weekday(day: Any) -> int:
    if day is None or day == "":
        return 0
    if isinstance(day, str) and day.strip().lower() in _WEEKDAYS:
        return _WEEKDAYS[day.strip().lower()]
    try:
        weekday = int(day)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid weekday '{day}'") from None
    if not 0 <= weekday <= 6:
        raise ValidationError(f"Invalid weekday '{day}'")
    return weekday


def _parse_month_day(day: Any) -> int:
    if day is None or day == "":
        return 1
    try:
        month_day = int(day)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid day of month '{day}'") from None
    if not 1 <= month_day <= 31:
        raise ValidationError(f"Invalid day of month '{day}'")
    return month_day


def resolve_cron(config: dict) -> str:
    """Return the cron expression a schedule trigger config describes.

    Raises:
        ValidationError: If the config has neither a valid `cron` nor a
            valid `frequency`
    """
    cron = (config or {}).get("cron") or (config or {}).get("cronExpression")
    if not cron:
        frequency = (config or {}).get("frequency")
        if not frequency:
            raise ValidationError("Schedule trigger requires 'cron' or 'frequency'")
        cron = frequency_to_cron(frequency, config.get("time"), config.get("day"))
    cron = cron.strip()
    if len(cron.split()) != 5:
        raise ValidationError(f"Invalid cron expression '{cron}' (expected 5 fields)")
    if not croniter.is_valid(cron):
        raise ValidationError(f"Invalid cron expression '{cron}'")
    return cron


def _zone(tz: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{tz}'") from None


def next_run(cron: str, after: datetime, tz: str = "UTC") -> datetime:
    """First firing time strictly after `after`, returned in UTC."""
    local_after = ensure_utc(after).astimezone(_zone(tz))
    upcoming = croniter(cron, local_after).get_next(datetime)
    return upcoming.astimezone(ZoneInfo("UTC"))


def is_due(cron: str, last_fired: Optional[datetime], now: datetime, tz: str = "UTC") -> bool:
    """Whether a schedule should fire at `now`.

    A schedule that never fired is due once `now` reaches a cron boundary
    within the last minute; otherwise it is due when the first occurrence
    after `last_fired` is not in the future.
    """
    now = ensure_utc(now)
    reference = ensure_utc(last_fired) if last_fired else now - timedelta(minutes=1)
    return next_run(cron, reference, tz) <= now


class ScheduleTriggerHandler(BaseTriggerHandler):
    """Handler for cron-based scheduled triggers.

    Config schema:
        {
            "cron": "0 9 * * 1",             # standard 5-field cron, or:
            "frequency": "weekly",           # hourly | daily | weekly | monthly
            "time": "09:00",
            "day": 1,
            "timezone": "Europe/Sofia"       # IANA timezone, default UTC
        }
    """

    trigger_type = TriggerType.SCHEDULE

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        if not isinstance(config, dict):
            return False, "Config must be a dict"
        try:
            resolve_cron(config)
            _zone(config.get("timezone"))
        except ValidationError as exc:
            return False, exc.message
        return True, None

    def build_context(self, event: TriggerEvent) -> dict[str, Any]:
        return {
            "trigger": {"type": "schedule", "firedAt": event.timestamp.isoformat(), **event.payload},
            "scheduleId": event.metadata.get("schedule_id"),
            "scheduledAt": event.timestamp.isoformat(),
        }
