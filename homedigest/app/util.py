import logging
import math
from datetime import datetime, timedelta

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format='[%(asctime)s] %(levelname)s %(name)s: %(message)s')


async def next_time_of_day(hhmm: str) -> float:
    # seconds until the next hh:mm in local container time
    now = datetime.now()
    hour, minute = map(int, hhmm.split(":"))
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def next_weekday_time(weekday: str, hhmm: str) -> float:
    """Seconds until the next occurrence of ``weekday`` at ``hhmm`` (local time)."""
    now = datetime.now()
    hour, minute = map(int, hhmm.split(":"))
    day = WEEKDAYS.index(weekday.strip().lower())
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    target += timedelta(days=(day - now.weekday()) % 7)
    if target <= now:
        target += timedelta(days=7)
    return (target - now).total_seconds()


def next_digest_time(hhmm: str, now: datetime | None = None) -> datetime:
    """Next local datetime at which the daily digest fires."""
    now = now or datetime.now()
    hour, minute = map(int, hhmm.split(":"))
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


def round_half_up(x: float) -> int:
    """Round .5 upwards (``round`` would bank to even)."""
    return math.floor(x + 0.5)
