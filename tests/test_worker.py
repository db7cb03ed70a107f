from datetime import timedelta
from unittest import mock

import pytest

from mailer import quota, store, worker
from mailer.campaigns import create_campaign
from mailer.exceptions import TransientSendError
from mailer.models import Campaign, Delivery
from tests.conftest import recipients

pytestmark = pytest.mark.django_db


@pytest.fixture
def transport():
    with mock.patch("mailer.worker.send_delivery", return_value="msg-1") as send:
        yield send


def test_cycle_sends_due_deliveries_in_priority_order(transport, make_delivery, now):
    later = make_delivery(recipient_email="later@example.org", priority=9)
    first = make_delivery(recipient_email="first@example.org", priority=1)

    summary = worker.process_queue(now=now, worker_id="w1")

    assert summary["claimed"] == 2
    assert summary["sent"] == 2
    assert [c.args[0].pk for c in transport.call_args_list] == [first.pk, later.pk]
    assert set(Delivery.objects.values_list("status", flat=True)) == {Delivery.SENT}
    assert quota.usage(now)["sent"] == 2


def test_failed_send_is_retried_later(transport, make_delivery, now):
    delivery = make_delivery()
    transport.side_effect = TransientSendError("provider down")

    summary = worker.process_queue(now=now, worker_id="w1")

    assert summary["failed"] == 1
    delivery.refresh_from_db()
    assert delivery.status == Delivery.FAILED
    assert delivery.retry_count == 1
    assert delivery.next_retry_at == now + timedelta(seconds=60)
    usage = quota.usage(now)
    assert (usage["sent"], usage["reserved"]) == (0, 0)

    # not due again until the backoff has passed
    assert worker.process_queue(now=now + timedelta(seconds=30), worker_id="w1")["claimed"] == 0
    transport.side_effect = None
    assert worker.process_queue(now=now + timedelta(seconds=60), worker_id="w1")["sent"] == 1


def test_unexpected_error_is_recorded_as_failure(transport, make_delivery, now):
    delivery = make_delivery()
    transport.side_effect = RuntimeError("template missing")

    worker.process_queue(now=now, worker_id="w1")

    delivery.refresh_from_db()
    assert delivery.status == Delivery.FAILED
    assert delivery.error_message == "template missing"


def test_exhausted_quota_defers_without_failing(transport, make_delivery, now, settings):
    settings.EMAIL_DAILY_QUOTA = 2
    for i in range(3):
        make_delivery(recipient_email=f"m{i}@example.org")

    first = worker.process_queue(now=now, worker_id="w1")
    second = worker.process_queue(now=now, worker_id="w1")

    assert first["sent"] == 2
    assert second["claimed"] == 0
    assert second["deferred"] == 1
    assert Delivery.objects.filter(status=Delivery.PENDING).count() == 1
    assert quota.usage(now)["sent"] == 2


def test_batch_size_limits_claims(transport, make_delivery, now):
    for i in range(5):
        make_delivery(recipient_email=f"m{i}@example.org")

    summary = worker.process_queue(now=now, worker_id="w1", batch_size=2)

    assert summary["sent"] == 2
    assert Delivery.objects.filter(status=Delivery.PENDING).count() == 3


def test_interrupted_batch_releases_the_rest(transport, make_delivery, now):
    for i in range(3):
        make_delivery(recipient_email=f"m{i}@example.org")
    transport.side_effect = ["msg-1", KeyboardInterrupt()]

    with pytest.raises(KeyboardInterrupt):
        worker.process_queue(now=now, worker_id="w1")

    statuses = sorted(Delivery.objects.values_list("status", flat=True))
    assert statuses.count(Delivery.SENT) == 1
    assert statuses.count(Delivery.SENDING) == 1
    assert statuses.count(Delivery.PENDING) == 1
    usage = quota.usage(now)
    assert usage["sent"] == 1
    assert usage["reserved"] == 1


def test_row_swept_to_another_worker_is_not_sent(transport, make_delivery, now):
    a = make_delivery(recipient_email="a@example.org", priority=1)
    b = make_delivery(recipient_email="b@example.org")
    later = now + timedelta(seconds=301)
    taken = {}

    def slow_send(delivery):
        if not taken:
            # the lease runs out mid-send and another worker picks up b
            store.release_stale_claims(later)
            taken["token"], _ = store.claim([b.pk], "w2", later)
        return "msg-1"

    transport.side_effect = slow_send

    summary = worker.process_queue(now=now, worker_id="w1")

    assert [c.args[0].pk for c in transport.call_args_list] == [a.pk]
    assert summary["lost"] == 1
    b.refresh_from_db()
    assert b.status == Delivery.SENDING
    assert b.claimed_by == taken["token"]
    usage = quota.usage(now)
    assert (usage["sent"], usage["reserved"]) == (0, 0)


def test_row_cancelled_mid_batch_is_skipped(transport, make_delivery, now):
    make_delivery(recipient_email="a@example.org", priority=1)
    b = make_delivery(recipient_email="b@example.org")

    def send_and_cancel(delivery):
        store.cancel_delivery(b.pk, now)
        return "msg-1"

    transport.side_effect = send_and_cancel

    summary = worker.process_queue(now=now, worker_id="w1")

    assert transport.call_count == 1
    assert (summary["sent"], summary["lost"]) == (1, 1)
    b.refresh_from_db()
    assert b.status == Delivery.CANCELLED
    assert b.claimed_by is None
    usage = quota.usage(now)
    assert (usage["sent"], usage["reserved"]) == (1, 0)


def test_stale_claims_recovered_at_cycle_start(transport, make_delivery, now, settings):
    settings.EMAIL_CLAIM_LEASE_SECONDS = 60
    delivery = make_delivery(status=Delivery.SENDING, claimed_by="dead:1", lease_expires_at=now - timedelta(seconds=1))

    summary = worker.process_queue(now=now, worker_id="w1")

    assert summary["recovered"] == 1
    assert summary["sent"] == 1
    delivery.refresh_from_db()
    assert delivery.status == Delivery.SENT
    assert delivery.retry_count == 1


def test_finished_campaign_is_completed(transport, now):
    campaign = create_campaign("Update", "Newsletter", recipients(3), subject="Hi", html_body="<p>Hi</p>", now=now)

    worker.process_queue(now=now, worker_id="w1")

    campaign.refresh_from_db()
    assert campaign.status == Campaign.COMPLETED


def test_run_worker_survives_cycle_errors():
    with mock.patch("mailer.worker.process_queue", side_effect=RuntimeError("db down")) as cycle, mock.patch(
        "mailer.worker.close_old_connections"
    ) as close:
        worker.run_worker(once=True)
    cycle.assert_called_once()
    close.assert_called_once()
