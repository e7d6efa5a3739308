"""Wall-clock helpers anchored to the restaurant's reference timezone."""

import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

TIME_OF_DAY_PATTERN = re.compile(r"\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_time_of_day(value: str) -> tuple[int, int] | None:
    """Parse ``HH:MM`` (seconds allowed and ignored).

    Returns:
        ``(hour, minute)`` or None if the value is not a valid time of day
    """
    match = TIME_OF_DAY_PATTERN.fullmatch(value or "")
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def reservation_datetime(time_of_day: str, now: datetime, tz: ZoneInfo) -> datetime | None:
    """Combine a time of day with today's date in the reference timezone.

    Args:
        time_of_day: Reservation time, ``HH:MM``
        now: Current instant (timezone-aware)
        tz: Reference timezone

    Returns:
        Timezone-aware reservation instant, or None if the time is invalid
    """
    parsed = parse_time_of_day(time_of_day)
    if parsed is None:
        return None
    hour, minute = parsed
    local_now = now.astimezone(tz)
    return local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
