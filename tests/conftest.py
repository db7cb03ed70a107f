from datetime import datetime, timezone

import pytest

from mailer.models import Delivery

NOW = datetime(2025, 6, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def mail_settings(settings):
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.EMAIL_SEND_DELAY_SECONDS = 0
    settings.EMAIL_RETRY_BASE_SECONDS = 60
    settings.EMAIL_RETRY_MAX_DELAY_SECONDS = 3600
    settings.EMAIL_MAX_RETRIES = 5
    settings.EMAIL_DAILY_QUOTA = 100
    settings.ORG_TIME_ZONE = "America/Chicago"
    return settings


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_delivery(db):
    def _make(**kwargs):
        fields = {
            "recipient_email": "member@example.org",
            "subject": "Hello",
            "html_body": "<p>Hello</p>",
            "status": Delivery.PENDING,
        }
        fields.update(kwargs)
        return Delivery.objects.create(**fields)

    return _make


def recipients(n, domain="example.org"):
    return [{"email": f"member{i}@{domain}", "name": f"Member {i}"} for i in range(n)]
