from datetime import datetime, timedelta
from typing import Optional, Tuple

from app.features.assurance.models.assurance import ScanFrequency
from app.platform.utils.time import utcnow

FREQUENCY_WEEKS = {
    ScanFrequency.weekly: 1,
    ScanFrequency.biweekly: 2,
}


def parse_time_of_day(time_of_day: str) -> Tuple[int, int]:
    """'HH:MM' -> (hours, minutes). Raises ValueError for anything else."""
    try:
        hours_str, minutes_str = time_of_day.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"time_of_day must be HH:MM, got {time_of_day!r}")
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"time_of_day out of range: {time_of_day!r}")
    return hours, minutes


def calculate_next_run(
    frequency: ScanFrequency,
    day_of_week: int,
    time_of_day: str,
    after: Optional[datetime] = None,
) -> datetime:
    """
    Next run strictly after `after` (naive UTC), on day_of_week (0 = Monday)
    at time_of_day. Biweekly schedules skip one extra week.
    """
    if not 0 <= day_of_week <= 6:
        raise ValueError(f"day_of_week must be 0-6, got {day_of_week}")
    after = after or utcnow()
    hours, minutes = parse_time_of_day(time_of_day)

    candidate = after.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    days_ahead = (day_of_week - after.weekday()) % 7
    candidate += timedelta(days=days_ahead)
    if candidate <= after:
        candidate += timedelta(weeks=1)

    extra_weeks = FREQUENCY_WEEKS[frequency] - 1
    return candidate + timedelta(weeks=extra_weeks)
