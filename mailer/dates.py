from datetime import date, datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone


def org_zone() -> ZoneInfo:
    return ZoneInfo(settings.ORG_TIME_ZONE)


def org_localtime(value: datetime | None = None) -> datetime:
    """Convert an aware datetime (default: now) to the organization's zone."""
    return timezone.localtime(value or timezone.now(), timezone=org_zone())


def org_today(now: datetime | None = None) -> date:
    """Calendar day in the organization's zone, used as the quota key."""
    return org_localtime(now).date()


def ensure_aware(value: datetime) -> datetime:
    # naive input is treated as UTC
    if timezone.is_naive(value):
        return timezone.make_aware(value, dt_timezone.utc)
    return value
