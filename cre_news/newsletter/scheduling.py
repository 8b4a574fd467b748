"""Send-time normalization and the hourly scheduling predicate."""

import json
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from .interfaces import PreferredSendTime, Subscriber, DEFAULT_PREFERRED_SEND_TIMES
from ..config.settings import settings

logger = structlog.get_logger()


def _to_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_send_time(entry) -> Optional[PreferredSendTime]:
    """One slot from a mapping or PreferredSendTime. None when invalid."""
    if isinstance(entry, PreferredSendTime):
        day, hour = entry.day_of_week, entry.hour
    elif isinstance(entry, dict):
        day = _to_int(entry.get("dayOfWeek", entry.get("day_of_week")))
        hour = _to_int(entry.get("hour"))
    else:
        return None
    if day is None or hour is None:
        return None
    if 0 <= day <= 6 and 0 <= hour <= 23:
        return PreferredSendTime(day_of_week=day, hour=hour)
    return None


def normalize_send_times(raw) -> List[PreferredSendTime]:
    """Coerce stored or submitted send times into valid slots.

    Accepts a JSON string, a list, or a single mapping. Invalid entries
    are dropped and an empty result becomes the default slot.
    """
    value = raw
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return list(DEFAULT_PREFERRED_SEND_TIMES)
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return list(DEFAULT_PREFERRED_SEND_TIMES)

    times = []
    for entry in value:
        slot = parse_send_time(entry)
        if slot is not None and slot not in times:
            times.append(slot)

    return times or list(DEFAULT_PREFERRED_SEND_TIMES)


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def day_of_week(moment: datetime) -> int:
    """Weekday with Sunday = 0."""
    return (moment.weekday() + 1) % 7


def local_time(target: datetime, tz_name: Optional[str]) -> datetime:
    """Convert a UTC time to the named zone; unknown zones stay in UTC."""
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    if tz_name and is_valid_timezone(tz_name):
        return target.astimezone(ZoneInfo(tz_name))
    if tz_name:
        logger.warning("invalid_timezone", timezone=tz_name)
    return target.astimezone(timezone.utc)


def should_prepare(subscriber: Subscriber, target_time: datetime) -> bool:
    """Whether the subscriber's newsletter is due in the hour of `target_time`.

    `target_time` is UTC (naive values are read as UTC).
    """
    if not subscriber.preferred_send_times:
        utc_target = local_time(target_time, None)
        return (day_of_week(utc_target) == settings.default_send_day_utc
                and utc_target.hour == settings.default_send_hour_utc)

    local = local_time(target_time, subscriber.timezone)
    local_day = day_of_week(local)
    return any(
        slot.day_of_week == local_day and slot.hour == local.hour
        for slot in subscriber.preferred_send_times
    )


def send_slot(target_time: datetime) -> datetime:
    """Naive UTC time truncated to the hour."""
    if target_time.tzinfo is not None:
        target_time = target_time.astimezone(timezone.utc).replace(tzinfo=None)
    return target_time.replace(minute=0, second=0, microsecond=0)
