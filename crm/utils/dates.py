# crm/utils/dates.py
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dtparse

from crm import config


def to_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are converted to UTC; naive ones are assumed UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_dt(val: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse ISO strings (trailing Z, offsets, plain dates) into naive UTC.
    Empty strings and None give None; garbage raises ValueError.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return to_utc_naive(val)
    s = str(val).strip()
    if not s:
        return None
    return to_utc_naive(dtparse.isoparse(s.replace("Z", "+00:00")))


def iso(dt: Optional[datetime]) -> str:
    return dt.isoformat() if dt else ""


def _tz():
    """Return ZoneInfo(config.TZ) or UTC if missing (Windows without tzdata, etc.)."""
    try:
        return ZoneInfo(config.TZ or "UTC")
    except ZoneInfoNotFoundError:
        return timezone.utc


def local_date(dt: datetime) -> date:
    """Calendar day of a naive-UTC datetime in the agency's timezone."""
    return dt.replace(tzinfo=timezone.utc).astimezone(_tz()).date()
