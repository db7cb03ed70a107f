import logging
import os
import socket
import time

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from . import campaigns, quota, store
from .dates import org_today
from .exceptions import QuotaExceeded, TransientSendError
from .sending import send_delivery

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _attempt(delivery):
    """Send one claimed delivery. Returns ``(success, provider_message_id, error)``."""
    try:
        provider_message_id = send_delivery(delivery)
    except TransientSendError as e:
        logger.warning("Email %s to %s failed: %s", delivery.pk, delivery.recipient_email, e)
        return False, None, str(e)
    except Exception as e:
        logger.exception("Error sending email %s to %s", delivery.pk, delivery.recipient_email)
        return False, None, str(e) or e.__class__.__name__
    logger.info("Sent email %s to %s", delivery.pk, delivery.recipient_email)
    return True, provider_message_id, None


def process_queue(now=None, worker_id=None, batch_size=None) -> dict:
    """
    One polling cycle: recover stale claims, reserve quota for a batch of due
    deliveries, claim them, attempt them in priority/due order, and sweep
    finished campaigns.

    Every claimed row has its lease renewed right before its send; a row that
    was cancelled or swept to another worker in the meantime is skipped.

    Passing ``now`` pins every timestamp of the cycle to that instant;
    otherwise outcomes are stamped with the wall clock at the time of the
    attempt.
    """
    pinned = now is not None
    now = now or timezone.now()
    worker_id = worker_id or default_worker_id()
    batch_size = batch_size or settings.EMAIL_QUEUE_BATCH_SIZE
    summary = {"claimed": 0, "sent": 0, "failed": 0, "deferred": 0, "recovered": 0, "lost": 0}

    summary["recovered"] = store.release_stale_claims(now)

    due = store.list_due(now, min(batch_size, quota.remaining(now)) or batch_size)
    if not due:
        campaigns.complete_finished_campaigns(now)
        return summary

    try:
        quota.reserve(len(due), now)
    except QuotaExceeded as e:
        summary["deferred"] = len(due)
        logger.warning("%s; %d due email(s) deferred", e, len(due))
        campaigns.complete_finished_campaigns(now)
        return summary

    day = org_today(now)
    claim_token, claimed_ids = store.claim([d.pk for d in due], worker_id, now, quota_date=day)
    quota.release(len(due) - len(claimed_ids), day=day)
    if not claimed_ids:
        campaigns.complete_finished_campaigns(now)
        return summary

    summary["claimed"] = len(claimed_ids)
    logger.info("Processing %d email(s) from queue", len(claimed_ids))
    by_id = {d.pk: d for d in due}
    delay = settings.EMAIL_SEND_DELAY_SECONDS
    attempted = 0
    try:
        for delivery_id in claimed_ids:
            if attempted and delay:
                time.sleep(delay)
            attempted += 1
            at = now if pinned else timezone.now()
            if not store.renew_claim(delivery_id, claim_token, at):
                summary["lost"] += 1
                logger.warning("Skipped email %s: claim %s no longer holds it", delivery_id, claim_token)
                if store.drop_claim(delivery_id, claim_token):
                    quota.release(1, day=day)
                continue

            success, provider_message_id, error = _attempt(by_id[delivery_id])
            summary["sent" if success else "failed"] += 1
            recorded = store.record_outcome(
                delivery_id,
                claim_token,
                success,
                provider_message_id=provider_message_id,
                error=error,
                now=at,
            )
            if recorded is None and not store.drop_claim(delivery_id, claim_token):
                # swept meanwhile; the sweep settled the reservation
                continue
            if success:
                quota.commit(1, day=day)
            else:
                quota.release(1, day=day)
    finally:
        leftover = claimed_ids[attempted:]
        if leftover:
            quota.release(store.release_claims(leftover, claim_token, now), day=day)

    campaigns.complete_finished_campaigns(now)
    return summary


def run_worker(interval=None, once=False, batch_size=None):
    interval = interval or settings.EMAIL_QUEUE_POLL_SECONDS
    worker_id = default_worker_id()
    logger.info("Email worker %s started. Interval: %ss", worker_id, interval)
    while True:
        try:
            summary = process_queue(worker_id=worker_id, batch_size=batch_size)
            if any(summary.values()):
                logger.info("Queue cycle finished: %s", summary)
        except Exception:
            logger.exception("Error in email worker loop")
        finally:
            close_old_connections()
        if once:
            return
        time.sleep(interval)
