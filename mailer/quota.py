import logging

from django.conf import settings
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from .dates import org_today
from .exceptions import QuotaExceeded
from .models import EmailQuota

logger = logging.getLogger(__name__)


def _day_row(now=None, day=None) -> EmailQuota:
    quota, created = EmailQuota.objects.get_or_create(date=day or org_today(now))
    if created:
        logger.debug("Opened email quota counter for %s", quota.date)
    return quota


def try_reserve(n: int, now=None) -> bool:
    """
    Reserve ``n`` sends against today's limit with a single compare-and-increment
    UPDATE, so concurrent workers can never push the day past the limit.
    """
    if n < 0:
        raise ValueError("cannot reserve a negative number of emails")
    if n == 0:
        return True
    quota = _day_row(now)
    limit = settings.EMAIL_DAILY_QUOTA
    reserved = EmailQuota.objects.filter(
        pk=quota.pk,
        emails_sent__lte=limit - n - F("reserved"),
    ).update(reserved=F("reserved") + n, updated_at=timezone.now())
    if not reserved:
        logger.info("Email quota for %s cannot cover %d more send(s)", quota.date, n)
    return bool(reserved)


def reserve(n: int, now=None):
    """Like try_reserve, but raises QuotaExceeded when the day cannot cover ``n``."""
    if not try_reserve(n, now):
        raise QuotaExceeded(
            f"Daily email quota of {settings.EMAIL_DAILY_QUOTA} cannot cover {n} more email(s)"
        )


def commit(n: int, now=None, day=None):
    """Turn ``n`` reservations into sends. The sent counter only ever grows."""
    if n <= 0:
        return
    quota = _day_row(now, day)
    EmailQuota.objects.filter(pk=quota.pk).update(
        emails_sent=F("emails_sent") + n,
        reserved=Greatest(F("reserved") - n, Value(0)),
        updated_at=timezone.now(),
    )


def release(n: int, now=None, day=None):
    if n <= 0:
        return
    quota = _day_row(now, day)
    EmailQuota.objects.filter(pk=quota.pk).update(
        reserved=Greatest(F("reserved") - n, Value(0)),
        updated_at=timezone.now(),
    )


def usage(now=None) -> dict:
    quota = _day_row(now)
    limit = settings.EMAIL_DAILY_QUOTA
    return {
        "date": quota.date,
        "limit": limit,
        "sent": quota.emails_sent,
        "reserved": quota.reserved,
        "remaining": max(0, limit - quota.emails_sent - quota.reserved),
    }


def remaining(now=None) -> int:
    return usage(now)["remaining"]
