from datetime import timedelta

import pytest

from mailer import campaigns
from mailer.exceptions import InvalidTransition, NotFound, ValidationError
from mailer.models import Campaign, Delivery
from tests.conftest import recipients

pytestmark = pytest.mark.django_db


def _campaign(now, n=10, **kwargs):
    return campaigns.create_campaign(
        "June newsletter",
        "Newsletter",
        recipients(n),
        subject="June news",
        html_body="<p>News</p>",
        now=now,
        **kwargs,
    )


def _set_status(campaign, count, **fields):
    ids = list(
        Delivery.objects.filter(campaign=campaign, status=Delivery.PENDING).values_list("pk", flat=True)[:count]
    )
    Delivery.objects.filter(pk__in=ids).update(**fields)


def test_create_campaign_dedupes_recipients(now):
    campaign = campaigns.create_campaign(
        "Gala",
        "EventAnnouncement",
        [
            {"email": "Ann@Example.org", "name": "Ann"},
            {"email": " ann@example.org"},
            {"email": "bob@example.org", "subject": "Bob, you're invited", "html_body": "<p>Bob</p>"},
        ],
        subject="You're invited",
        html_body="<p>Join us</p>",
        created_by="admin@example.org",
        now=now,
    )

    assert campaign.status == Campaign.ACTIVE
    assert campaign.total_recipients == 2
    deliveries = {d.recipient_email: d for d in campaign.deliveries.all()}
    assert set(deliveries) == {"Ann@Example.org", "bob@example.org"}
    assert deliveries["Ann@Example.org"].recipient_name == "Ann"
    assert deliveries["bob@example.org"].subject == "Bob, you're invited"
    assert all(d.status == Delivery.PENDING for d in deliveries.values())


def test_create_campaign_scheduled_in_future(now):
    campaign = _campaign(now, n=2, scheduled_for=now + timedelta(days=1))
    assert set(campaign.deliveries.values_list("status", flat=True)) == {Delivery.SCHEDULED}


def test_create_campaign_is_all_or_nothing(now):
    with pytest.raises(ValidationError):
        campaigns.create_campaign(
            "Broken",
            "Newsletter",
            [{"email": "ok@example.org"}, {"email": "broken"}],
            subject="Hi",
            html_body="<p>Hi</p>",
            now=now,
        )
    assert Campaign.objects.count() == 0
    assert Delivery.objects.count() == 0


@pytest.mark.parametrize("name,people", [("", recipients(1)), ("Empty", [])])
def test_create_campaign_validation(name, people, now):
    with pytest.raises(ValidationError):
        campaigns.create_campaign(name, "Newsletter", people, subject="Hi", html_body="<p>Hi</p>", now=now)


def test_stats_count_sent_failed_pending(now):
    campaign = _campaign(now)
    _set_status(campaign, 6, status=Delivery.SENT, sent_at=now)
    _set_status(campaign, 3, status=Delivery.FAILED, retry_count=1, next_retry_at=now + timedelta(minutes=1))

    stats = campaigns.derive_stats(campaign)
    assert (stats["sent"], stats["failed"], stats["pending"]) == (6, 3, 1)
    assert (stats["retrying"], stats["total"]) == (3, 10)

    stats = campaigns.derive_stats(campaign, retrying_as_pending=True)
    assert (stats["sent"], stats["failed"], stats["pending"]) == (6, 0, 4)


def test_stats_permanent_failures_stay_failed(now):
    campaign = _campaign(now)
    _set_status(campaign, 6, status=Delivery.SENT, sent_at=now)
    _set_status(campaign, 3, status=Delivery.FAILED, retry_count=5)

    for retrying_as_pending in (False, True):
        stats = campaigns.derive_stats(campaign, retrying_as_pending=retrying_as_pending)
        assert (stats["sent"], stats["failed"], stats["pending"], stats["retrying"]) == (6, 3, 1, 0)


def test_stats_retrying_counted_either_way(now):
    campaign = _campaign(now, n=4)
    _set_status(campaign, 1, status=Delivery.FAILED, retry_count=5)
    _set_status(campaign, 1, status=Delivery.FAILED, retry_count=2, next_retry_at=now)
    _set_status(campaign, 1, status=Delivery.SCHEDULED, scheduled_for=now)

    default = campaigns.derive_stats(campaign)
    assert (default["failed"], default["pending"], default["retrying"]) == (2, 2, 1)

    optimistic = campaigns.derive_stats(campaign, retrying_as_pending=True)
    assert (optimistic["failed"], optimistic["pending"], optimistic["retrying"]) == (1, 3, 1)


def test_stats_follow_delivery_changes(now):
    campaign = _campaign(now, n=2)
    assert campaigns.derive_stats(campaign)["pending"] == 2

    _set_status(campaign, 1, status=Delivery.SENT, sent_at=now)

    stats = campaigns.derive_stats(campaign)
    assert (stats["sent"], stats["pending"]) == (1, 1)


def test_list_campaigns_carries_stats(now):
    first = _campaign(now, n=3)
    second = campaigns.create_campaign(
        "Reminder", "EventReminder", recipients(2, "other.org"), subject="Soon", html_body="<p>Soon</p>", now=now
    )
    _set_status(first, 1, status=Delivery.SENT, sent_at=now)

    listed = {c.pk: c.stats for c in campaigns.list_campaigns()}

    assert listed[first.pk] == campaigns.derive_stats(first)
    assert listed[second.pk]["pending"] == 2


def test_cancel_campaign_cancels_queued_deliveries(now):
    campaign = _campaign(now, n=4)
    _set_status(campaign, 1, status=Delivery.SENT, sent_at=now)
    _set_status(campaign, 1, status=Delivery.FAILED, retry_count=1, next_retry_at=now)

    cancelled = campaigns.cancel_campaign(campaign.pk, now=now)

    assert cancelled.status == Campaign.CANCELLED
    assert cancelled.completed_at == now
    stats = campaigns.derive_stats(campaign)
    assert (stats["sent"], stats["cancelled"], stats["pending"]) == (1, 3, 0)
    assert campaigns.cancel_campaign(campaign.pk, now=now).status == Campaign.CANCELLED


def test_cancel_completed_campaign_is_rejected(now):
    campaign = _campaign(now, n=1)
    Campaign.objects.filter(pk=campaign.pk).update(status=Campaign.COMPLETED)
    with pytest.raises(InvalidTransition):
        campaigns.cancel_campaign(campaign.pk, now=now)


def test_get_campaign_unknown_id():
    with pytest.raises(NotFound):
        campaigns.get_campaign("00000000-0000-0000-0000-000000000000")


def test_completion_sweep(now):
    done = _campaign(now, n=2)
    _set_status(done, 1, status=Delivery.SENT, sent_at=now)
    _set_status(done, 1, status=Delivery.FAILED, retry_count=5)
    waiting = campaigns.create_campaign(
        "Still going", "Newsletter", recipients(2, "other.org"), subject="Hi", html_body="<p>Hi</p>", now=now
    )
    _set_status(waiting, 1, status=Delivery.SENT, sent_at=now)
    _set_status(waiting, 1, status=Delivery.FAILED, retry_count=1, next_retry_at=now)

    assert campaigns.complete_finished_campaigns(now) == 1

    done.refresh_from_db()
    waiting.refresh_from_db()
    assert done.status == Campaign.COMPLETED
    assert done.completed_at == now
    assert waiting.status == Campaign.ACTIVE
