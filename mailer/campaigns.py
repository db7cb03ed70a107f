import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Exists, OuterRef, Q
from django.utils import timezone

from .dates import ensure_aware
from .exceptions import InvalidTransition, NotFound, ValidationError
from .models import Campaign, Delivery
from .store import initial_status, normalize_email, retryable_q, validate_message

logger = logging.getLogger(__name__)

QUEUED_STATUSES = [Delivery.PENDING, Delivery.SCHEDULED]


def _stat_counts(prefix=""):
    """Count expressions over deliveries; prefix is the relation path, if any."""
    pk = f"{prefix}pk" if prefix else "pk"

    def status_is(*statuses):
        return Q(**{f"{prefix}status__in": list(statuses)})

    retrying = Q(
        **{
            f"{prefix}status": Delivery.FAILED,
            f"{prefix}retry_count__lt": settings.EMAIL_MAX_RETRIES,
        }
    )
    return {
        "n_total": Count(pk),
        "n_sent": Count(pk, filter=status_is(Delivery.SENT)),
        "n_queued": Count(pk, filter=status_is(*QUEUED_STATUSES)),
        "n_sending": Count(pk, filter=status_is(Delivery.SENDING)),
        "n_failed": Count(pk, filter=status_is(Delivery.FAILED)),
        "n_retrying": Count(pk, filter=retrying),
        "n_cancelled": Count(pk, filter=status_is(Delivery.CANCELLED)),
    }


def _stats_from_counts(counts, retrying_as_pending=False) -> dict:
    failed = counts["n_failed"]
    pending = counts["n_queued"]
    retrying = counts["n_retrying"]
    if retrying_as_pending:
        failed -= retrying
        pending += retrying
    return {
        "sent": counts["n_sent"],
        "failed": failed,
        "pending": pending,
        "sending": counts["n_sending"],
        "cancelled": counts["n_cancelled"],
        "retrying": retrying,
        "total": counts["n_total"],
    }


def derive_stats(campaign, retrying_as_pending=False) -> dict:
    """
    Live counts for a campaign, recomputed from its deliveries on every call.

    Failed deliveries still waiting for a retry count as ``failed`` by
    default; with ``retrying_as_pending`` they move to ``pending``. They are
    always reported on their own under ``retrying``.
    """
    campaign_id = getattr(campaign, "pk", campaign)
    counts = Delivery.objects.filter(campaign_id=campaign_id).aggregate(**_stat_counts())
    return _stats_from_counts(counts, retrying_as_pending)


def create_campaign(
    name,
    campaign_type,
    recipients,
    subject=None,
    html_body=None,
    text_body=None,
    created_by=None,
    metadata=None,
    priority=Delivery.DEFAULT_PRIORITY,
    scheduled_for=None,
    now=None,
) -> Campaign:
    """
    Persist a campaign and one delivery per distinct recipient.

    ``recipients`` is a list of dicts with ``email`` and optional ``name``,
    ``subject``, ``html_body`` and ``text_body``; per-recipient content
    overrides the campaign-level arguments. Bodies arrive pre-rendered.
    """
    now = now or timezone.now()
    if not (name or "").strip():
        raise ValidationError("Campaign name is required")
    if not recipients:
        raise ValidationError("At least one recipient is required")
    if scheduled_for is not None:
        scheduled_for = ensure_aware(scheduled_for)

    # dedupe by normalized address, first occurrence wins
    messages = {}
    for recipient in recipients:
        email = normalize_email(recipient.get("email"))
        key = email.lower()
        if key in messages:
            continue
        message = {
            "recipient_email": email,
            "recipient_name": recipient.get("name") or None,
            "subject": recipient.get("subject") or subject,
            "html_body": recipient.get("html_body") or html_body,
            "text_body": recipient.get("text_body") or text_body or None,
        }
        validate_message(email, message["subject"], message["html_body"])
        messages[key] = message

    status = initial_status(scheduled_for, now)
    with transaction.atomic():
        campaign = Campaign.objects.create(
            name=name.strip(),
            campaign_type=campaign_type or "",
            total_recipients=len(messages),
            created_by=created_by,
            metadata=metadata or {},
        )
        Delivery.objects.bulk_create(
            [
                Delivery(
                    campaign=campaign,
                    status=status,
                    priority=priority,
                    scheduled_for=scheduled_for,
                    **message,
                )
                for message in messages.values()
            ]
        )

    logger.info("Queued %d emails for campaign %s (%s)", len(messages), campaign.pk, campaign.name)
    return campaign


def get_campaign(campaign_id) -> Campaign:
    campaign = Campaign.objects.filter(pk=campaign_id).first()
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    return campaign


def list_campaigns(retrying_as_pending=False) -> list[Campaign]:
    """Newest first; each campaign carries its derived ``stats``."""
    campaigns = list(
        Campaign.objects.annotate(**_stat_counts("deliveries__")).order_by("-created_at")
    )
    for campaign in campaigns:
        counts = {key: getattr(campaign, key) for key in _stat_counts()}
        campaign.stats = _stats_from_counts(counts, retrying_as_pending)
    return campaigns


def cancel_campaign(campaign_id, now=None) -> Campaign:
    now = now or timezone.now()
    with transaction.atomic():
        campaign = Campaign.objects.select_for_update().filter(pk=campaign_id).first()
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        if campaign.status == Campaign.COMPLETED:
            raise InvalidTransition(f"Campaign {campaign_id} is already completed")
        if campaign.status != Campaign.CANCELLED:
            campaign.status = Campaign.CANCELLED
            campaign.completed_at = now
            campaign.save(update_fields=["status", "completed_at"])
        cancelled = (
            Delivery.objects.filter(campaign=campaign)
            .filter(Q(status__in=QUEUED_STATUSES) | retryable_q())
            .update(status=Delivery.CANCELLED, next_retry_at=None, updated_at=now)
        )
    logger.info("Cancelled campaign %s (%d queued emails cancelled)", campaign_id, cancelled)
    return campaign


def complete_finished_campaigns(now=None) -> int:
    """Mark Active campaigns Completed once none of their deliveries can still be sent."""
    now = now or timezone.now()
    open_deliveries = Delivery.objects.filter(campaign=OuterRef("pk")).filter(
        Q(status__in=QUEUED_STATUSES + [Delivery.SENDING]) | retryable_q()
    )
    any_delivery = Delivery.objects.filter(campaign=OuterRef("pk"))
    completed = (
        Campaign.objects.filter(status=Campaign.ACTIVE)
        .filter(Exists(any_delivery))
        .exclude(Exists(open_deliveries))
        .update(status=Campaign.COMPLETED, completed_at=now)
    )
    if completed:
        logger.info("Marked %d campaign(s) completed", completed)
    return completed
