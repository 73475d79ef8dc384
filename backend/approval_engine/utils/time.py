"""Time Utilities - UTC timestamps, business dates and formatting"""
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
from dateutil import parser as date_parser

from ..config.settings import settings


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    MongoDB hands back naive datetimes that are already UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO 8601 string

    Args:
        dt: Datetime object

    Returns:
        ISO formatted string with Z suffix for UTC
    """
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Accepts plain dates ("2024-05-01") as midnight UTC.

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def business_date(moment: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """
    Calendar date of a moment in the business timezone.

    Delegation windows are whole days, so "today" depends on where the
    company is, not on UTC.
    """
    moment = ensure_utc(moment) if moment is not None else utc_now()
    zone = ZoneInfo(tz_name or settings.business_timezone)
    return moment.astimezone(zone).date()
