"""
Pure date and clock helpers. "now" is always injectable so callers and tests
control the clock.
"""
import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import FormatError

CLOCK_PATTERN = re.compile(r"\b(\d{1,2}):(\d{2})\b")
HHMM_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def today(now: Optional[datetime] = None) -> str:
    """Device-local calendar date as YYYY-MM-DD.

    Built from the local year/month/day fields of now; never converted through UTC.
    """
    now = now or datetime.now()
    return f"{now.year:04d}-{now.month:02d}-{now.day:02d}"


def api_date(local_date: str) -> str:
    """YYYY-MM-DD -> DD-MM-YYYY as the lookup expects."""
    return date.fromisoformat(local_date).strftime("%d-%m-%Y")


def normalize_clock(raw: str) -> str:
    """Extract the first H:MM or HH:MM in raw and zero-pad the hour.

    "5:03" -> "05:03", "23:59 (WIB)" -> "23:59". Raises FormatError when nothing matches.
    """
    match = CLOCK_PATTERN.search(str(raw)) if raw is not None else None
    if not match:
        raise FormatError(f"Invalid time format: {raw!r}")
    hour, minute = match.groups()
    return f"{hour.zfill(2)}:{minute}"


def parse_clock(hhmm: str) -> Tuple[int, int]:
    """Split a validated HH:MM string into (hour, minute)."""
    if not isinstance(hhmm, str) or not HHMM_PATTERN.match(hhmm):
        raise FormatError(f"Bad HH:MM: {hhmm!r}")
    hour, minute = int(hhmm[:2]), int(hhmm[3:])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise FormatError(f"Bad HH:MM: {hhmm!r}")
    return hour, minute


def next_trigger_time(hhmm: str, now: Optional[datetime] = None) -> datetime:
    """Next device-local wall-clock occurrence of hhmm strictly after the current minute.

    A daily trigger installed during its own minute first fires tomorrow.
    """
    hour, minute = parse_clock(hhmm)
    now = now or datetime.now()
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now.replace(second=0, microsecond=0):
        candidate += timedelta(days=1)
    return candidate


def is_same_minute(hhmm: str, now: Optional[datetime] = None) -> bool:
    hour, minute = parse_clock(hhmm)
    now = now or datetime.now()
    return now.hour == hour and now.minute == minute


def timezone_mismatch(tz_name: str, now: Optional[datetime] = None) -> bool:
    """True when the device's UTC offset differs from tz_name's at this instant.

    Daily triggers fire on device wall-clock time, so a mismatch shifts them.
    Unknown zone names count as a mismatch.
    """
    now = now or datetime.now()
    local = now.astimezone() if now.tzinfo is None else now
    try:
        remote = local.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        return True
    return local.utcoffset() != remote.utcoffset()
