# clock.py
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from config import APP_TIMEZONE

WALL_CLOCK_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_zone() -> ZoneInfo:
    return ZoneInfo(APP_TIMEZONE)


def format_wall_clock(moment: datetime) -> str:
    """Second-precision local time, e.g. ``2026-10-19 16:00:00``."""
    return moment.astimezone(local_zone()).strftime(WALL_CLOCK_FORMAT)


def parse_wall_clock(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        naive = datetime.strptime(value.strip(), WALL_CLOCK_FORMAT)
    except ValueError:
        return parse_iso(value)
    return naive.replace(tzinfo=local_zone())


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_past(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and moment < now


def local_today(now: datetime) -> date:
    return now.astimezone(local_zone()).date()


def day_is_over(expiry_day: str | None, now: datetime) -> bool:
    """A ``YYYY-MM-DD`` expiry stays valid through the end of that local day."""
    if not expiry_day:
        return False
    try:
        day = date.fromisoformat(expiry_day.strip()[:10])
    except ValueError:
        # unreadable dates count as expired
        return True
    return local_today(now) > day


def add_hours(moment: datetime, hours: float) -> datetime:
    return moment + timedelta(hours=hours)
