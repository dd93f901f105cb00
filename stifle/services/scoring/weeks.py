from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the IANA zone for `name`, falling back to UTC."""
    if not name:
        return ZoneInfo('UTC')
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo('UTC')


def week_start_for_timezone(at: datetime, tz_name: Optional[str]) -> date:
    """Monday (local to `tz_name`) of the week containing `at`."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    local = at.astimezone(resolve_timezone(tz_name))
    return local.date() - timedelta(days=local.weekday())


def week_bounds_ms(week_start: date, tz_name: Optional[str]) -> Tuple[int, int]:
    """UTC epoch-ms bounds [Monday 00:00, next Monday 00:00) in local time.

    The end is computed from the next local midnight rather than start + 7d
    so weeks containing a DST change keep their local boundaries.
    """
    tz = resolve_timezone(tz_name)
    start = datetime.combine(week_start, time.min, tzinfo=tz)
    end = datetime.combine(week_start + timedelta(days=7), time.min, tzinfo=tz)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def ms_to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)
