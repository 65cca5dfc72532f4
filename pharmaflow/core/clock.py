from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from pharmaflow.core.config import settings


def reporting_tz() -> ZoneInfo:
    return ZoneInfo(settings.reporting_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def reporting_today(now: datetime | None = None) -> date:
    return as_utc(now or utc_now()).astimezone(reporting_tz()).date()


def local_midnight_utc(day: date) -> datetime:
    """Start of a reporting-calendar day, expressed in UTC."""
    return datetime.combine(day, time.min, tzinfo=reporting_tz()).astimezone(timezone.utc)
