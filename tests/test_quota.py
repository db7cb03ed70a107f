from datetime import date, datetime, timezone

import pytest

from mailer import quota
from mailer.dates import org_today
from mailer.exceptions import QuotaExceeded
from mailer.models import EmailQuota

pytestmark = pytest.mark.django_db

# 18:00 on June 9 in Chicago
EVENING = datetime(2025, 6, 9, 23, 0, tzinfo=timezone.utc)
# past UTC midnight, still June 9 in Chicago
AFTER_UTC_MIDNIGHT = datetime(2025, 6, 10, 1, 0, tzinfo=timezone.utc)
# 00:30 on June 10 in Chicago
AFTER_LOCAL_MIDNIGHT = datetime(2025, 6, 10, 5, 30, tzinfo=timezone.utc)


def test_org_today_uses_organization_zone():
    assert org_today(EVENING) == date(2025, 6, 9)
    assert org_today(AFTER_UTC_MIDNIGHT) == date(2025, 6, 9)
    assert org_today(AFTER_LOCAL_MIDNIGHT) == date(2025, 6, 10)


def test_quota_resets_on_local_midnight_not_utc():
    assert quota.try_reserve(100, EVENING)
    quota.commit(100, EVENING)

    assert not quota.try_reserve(1, AFTER_UTC_MIDNIGHT)
    assert quota.remaining(AFTER_UTC_MIDNIGHT) == 0

    assert quota.try_reserve(1, AFTER_LOCAL_MIDNIGHT)
    assert quota.usage(AFTER_LOCAL_MIDNIGHT)["date"] == date(2025, 6, 10)


def test_reservations_count_against_limit(settings, now):
    settings.EMAIL_DAILY_QUOTA = 5

    assert quota.try_reserve(3, now)
    assert not quota.try_reserve(3, now)
    assert quota.try_reserve(2, now)
    assert quota.remaining(now) == 0


def test_commit_and_release(settings, now):
    settings.EMAIL_DAILY_QUOTA = 10
    quota.try_reserve(4, now)

    quota.commit(1, now)
    quota.release(3, now)

    usage = quota.usage(now)
    assert (usage["sent"], usage["reserved"], usage["remaining"]) == (1, 0, 9)


def test_release_never_goes_negative(now):
    quota.release(5, now)
    assert EmailQuota.objects.get(date=org_today(now)).reserved == 0


def test_negative_reservation_rejected(now):
    with pytest.raises(ValueError):
        quota.try_reserve(-1, now)


def test_reserve_raises_when_the_day_is_full(settings, now):
    settings.EMAIL_DAILY_QUOTA = 3
    quota.reserve(2, now)

    with pytest.raises(QuotaExceeded):
        quota.reserve(2, now)
    assert quota.usage(now)["reserved"] == 2
