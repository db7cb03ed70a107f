import logging
import uuid
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.db.models.functions import Coalesce
from django.utils import timezone

from . import quota
from .dates import ensure_aware
from .exceptions import (
    DuplicateRecipient,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .models import Delivery

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500
STALE_LEASE_MESSAGE = "Worker lease expired before the send outcome was recorded"


def clamp_take(take, default: int = DEFAULT_PAGE_SIZE) -> int:
    try:
        take = int(take)
    except (TypeError, ValueError):
        take = default
    return max(1, min(take, MAX_PAGE_SIZE))


def normalize_email(value) -> str:
    return (value or "").strip()


def validate_message(recipient_email, subject, html_body):
    missing = [
        field
        for field, value in (
            ("recipient", recipient_email),
            ("subject", subject),
            ("body", html_body),
        )
        if not (value or "").strip()
    ]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    try:
        validate_email(recipient_email)
    except DjangoValidationError:
        raise ValidationError(f"Invalid recipient address: {recipient_email}")
    if len(subject) > 500:
        raise ValidationError("Subject must be at most 500 characters")


def initial_status(scheduled_for, now):
    if scheduled_for is not None and scheduled_for > now:
        return Delivery.SCHEDULED
    return Delivery.PENDING


def backoff_delay(retry_count: int) -> timedelta:
    """
    Delay before the next attempt, given the retry count *before* the failure
    being recorded: base, 2 x base, 4 x base, ... capped at the max delay.
    """
    base = settings.EMAIL_RETRY_BASE_SECONDS
    cap = settings.EMAIL_RETRY_MAX_DELAY_SECONDS
    seconds = min(base * (2 ** min(retry_count, 32)), cap)
    return timedelta(seconds=seconds)


def retryable_q() -> Q:
    return Q(status=Delivery.FAILED, retry_count__lt=settings.EMAIL_MAX_RETRIES)


def due_q(now) -> Q:
    return (
        Q(status=Delivery.PENDING)
        | Q(status=Delivery.SCHEDULED, scheduled_for__lte=now)
        | (retryable_q() & Q(next_retry_at__lte=now))
    )


def enqueue_email(
    recipient_email,
    subject,
    html_body,
    text_body=None,
    priority=Delivery.DEFAULT_PRIORITY,
    campaign=None,
    recipient_name=None,
    scheduled_for=None,
    now=None,
):
    now = now or timezone.now()
    recipient_email = normalize_email(recipient_email)
    validate_message(recipient_email, subject, html_body)
    if scheduled_for is not None:
        scheduled_for = ensure_aware(scheduled_for)

    if campaign is not None and Delivery.objects.filter(
        campaign=campaign, recipient_email__iexact=recipient_email
    ).exists():
        raise DuplicateRecipient(campaign.pk, recipient_email)

    try:
        with transaction.atomic():
            delivery = Delivery.objects.create(
                campaign=campaign,
                recipient_email=recipient_email,
                recipient_name=recipient_name or None,
                subject=subject,
                html_body=html_body,
                text_body=text_body or None,
                status=initial_status(scheduled_for, now),
                priority=priority,
                scheduled_for=scheduled_for,
            )
    except IntegrityError as e:
        # lost a race with a concurrent enqueue for the same pair
        if campaign is not None:
            raise DuplicateRecipient(campaign.pk, recipient_email) from e
        raise

    logger.info(
        "Queued email %s to %s (status %s)",
        delivery.pk,
        recipient_email,
        delivery.status,
    )
    return delivery.pk


def list_due(now=None, limit=None) -> list[Delivery]:
    now = now or timezone.now()
    limit = limit or settings.EMAIL_QUEUE_BATCH_SIZE
    qs = (
        Delivery.objects.filter(due_q(now))
        .select_related("campaign")
        .annotate(due_at=Coalesce("next_retry_at", "scheduled_for", "created_at"))
        .order_by("priority", "due_at", "created_at")
    )
    return list(qs[:limit])


def claim(ids, worker_id, now=None, quota_date=None):
    """
    Move still-eligible rows to Sending in one conditional UPDATE.
    ``quota_date`` names the quota day holding the caller's reservation for
    these rows; whoever later clears the claim settles that reservation.

    Returns ``(claim_token, claimed_ids)``; ``claimed_ids`` keeps the order of
    ``ids`` and only contains rows this call won. Concurrent callers always get
    disjoint sets because the UPDATE re-checks eligibility per row.
    """
    now = now or timezone.now()
    ids = list(ids)
    if not ids:
        return None, []
    token = f"{str(worker_id)[:80]}:{uuid.uuid4().hex}"
    lease_expires_at = now + timedelta(seconds=settings.EMAIL_CLAIM_LEASE_SECONDS)
    Delivery.objects.filter(pk__in=ids).filter(due_q(now)).update(
        status=Delivery.SENDING,
        claimed_by=token,
        lease_expires_at=lease_expires_at,
        quota_date=quota_date,
        updated_at=now,
    )
    won = set(
        Delivery.objects.filter(
            pk__in=ids, status=Delivery.SENDING, claimed_by=token
        ).values_list("pk", flat=True)
    )
    return token, [i for i in ids if i in won]


def renew_claim(delivery_id, claim_token, now=None) -> bool:
    """
    Extend the lease on a row this claim still holds. False means the row was
    cancelled or swept to another worker and must not be sent.
    """
    now = now or timezone.now()
    lease_expires_at = now + timedelta(seconds=settings.EMAIL_CLAIM_LEASE_SECONDS)
    renewed = Delivery.objects.filter(
        pk=delivery_id, status=Delivery.SENDING, claimed_by=claim_token
    ).update(lease_expires_at=lease_expires_at, updated_at=now)
    return bool(renewed)


def drop_claim(delivery_id, claim_token) -> bool:
    """
    Clear a claim token left on a row that was cancelled under the claim.
    True means the caller still owned the claim and so must settle its
    quota reservation; False means a sweep already did.
    """
    dropped = Delivery.objects.filter(pk=delivery_id, claimed_by=claim_token).update(
        claimed_by=None, lease_expires_at=None, quota_date=None
    )
    return bool(dropped)


def release_claims(ids, claim_token, now=None) -> int:
    """Hand claimed but unattempted rows back without counting a failure."""
    now = now or timezone.now()
    ids = list(ids)
    if not ids or not claim_token:
        return 0
    owned = Delivery.objects.filter(
        pk__in=ids, status=Delivery.SENDING, claimed_by=claim_token
    )
    cleared = {"claimed_by": None, "lease_expires_at": None, "quota_date": None, "updated_at": now}
    released = owned.filter(retry_count__gt=0).update(status=Delivery.FAILED, **cleared)
    released += owned.filter(retry_count=0, scheduled_for__isnull=False).update(
        status=Delivery.SCHEDULED, **cleared
    )
    released += owned.filter(retry_count=0, scheduled_for__isnull=True).update(
        status=Delivery.PENDING, **cleared
    )
    return released


def record_outcome(
    delivery_id,
    claim_token,
    success,
    provider_message_id=None,
    error=None,
    now=None,
):
    """
    Apply the result of one send attempt. Returns the new status, or None
    when the row no longer belongs to this claim (cancelled or swept).
    """
    now = now or timezone.now()
    owned = Delivery.objects.filter(
        pk=delivery_id, status=Delivery.SENDING, claimed_by=claim_token
    )
    released = {"claimed_by": None, "lease_expires_at": None, "quota_date": None, "updated_at": now}

    if success:
        updated = owned.update(
            status=Delivery.SENT,
            sent_at=now,
            provider_message_id=provider_message_id,
            error_message=None,
            next_retry_at=None,
            **released,
        )
        new_status = Delivery.SENT
    else:
        current = owned.only("retry_count").first()
        updated = 0
        if current is not None:
            retry_count = current.retry_count + 1
            if retry_count >= settings.EMAIL_MAX_RETRIES:
                next_retry_at = None
                error = f"Gave up after {retry_count} attempts: {error or 'unknown error'}"
            else:
                next_retry_at = now + backoff_delay(current.retry_count)
            updated = owned.update(
                status=Delivery.FAILED,
                retry_count=retry_count,
                next_retry_at=next_retry_at,
                failed_at=now,
                error_message=error or "Send failed",
                **released,
            )
            if updated and next_retry_at is None:
                logger.error("Email %s permanently failed: %s", delivery_id, error)
        new_status = Delivery.FAILED

    if updated:
        return new_status

    if not Delivery.objects.filter(pk=delivery_id).exists():
        raise NotFound(f"Delivery {delivery_id} not found")
    if provider_message_id:
        Delivery.objects.filter(
            pk=delivery_id, provider_message_id__isnull=True
        ).update(provider_message_id=provider_message_id, updated_at=now)
    logger.warning(
        "Dropped outcome for email %s: row is no longer held by claim %s",
        delivery_id,
        claim_token,
    )
    return None


def release_stale_claims(now=None) -> int:
    """
    Crash recovery: Sending rows whose lease ran out become Failed and are
    retryable immediately, unless that was their last allowed attempt. The
    quota reserved for those claims is handed back, as it is for expired
    claims left on rows cancelled mid-send.
    """
    now = now or timezone.now()
    stale = Delivery.objects.filter(status=Delivery.SENDING, lease_expires_at__lt=now)
    last_attempt = settings.EMAIL_MAX_RETRIES - 1
    fields = {
        "status": Delivery.FAILED,
        "retry_count": F("retry_count") + 1,
        "failed_at": now,
        "error_message": STALE_LEASE_MESSAGE,
        "claimed_by": None,
        "lease_expires_at": None,
        "quota_date": None,
        "updated_at": now,
    }
    recovered = exhausted = 0
    for day in set(stale.values_list("quota_date", flat=True)):
        rows = stale.filter(quota_date=day)
        day_exhausted = rows.filter(retry_count__gte=last_attempt).update(
            next_retry_at=None, **fields
        )
        day_recovered = rows.filter(retry_count__lt=last_attempt).update(
            next_retry_at=now, **fields
        )
        if day is not None:
            quota.release(day_exhausted + day_recovered, day=day)
        exhausted += day_exhausted
        recovered += day_recovered

    orphaned = Delivery.objects.filter(
        status=Delivery.CANCELLED, claimed_by__isnull=False, lease_expires_at__lt=now
    )
    for day in set(orphaned.values_list("quota_date", flat=True)):
        cleared = orphaned.filter(quota_date=day).update(
            claimed_by=None, lease_expires_at=None, quota_date=None
        )
        if day is not None:
            quota.release(cleared, day=day)

    if exhausted or recovered:
        logger.warning(
            "Recovered %d stale email claim(s); %d permanently failed",
            recovered,
            exhausted,
        )
    return recovered + exhausted


def get_delivery(delivery_id) -> Delivery:
    delivery = Delivery.objects.select_related("campaign").filter(pk=delivery_id).first()
    if delivery is None:
        raise NotFound(f"Delivery {delivery_id} not found")
    return delivery


def list_deliveries(status=None, take=DEFAULT_PAGE_SIZE) -> list[Delivery]:
    qs = Delivery.objects.all()
    if status:
        qs = qs.filter(status=status)
    return list(qs.order_by("priority", "created_at")[: clamp_take(take)])


def cancel_delivery(delivery_id, now=None) -> Delivery:
    now = now or timezone.now()
    cancellable = Q(
        status__in=[Delivery.PENDING, Delivery.SCHEDULED, Delivery.SENDING]
    ) | retryable_q()
    updated = (
        Delivery.objects.filter(pk=delivery_id)
        .filter(cancellable)
        .update(status=Delivery.CANCELLED, next_retry_at=None, updated_at=now)
    )
    delivery = get_delivery(delivery_id)
    if not updated and delivery.status != Delivery.CANCELLED:
        raise InvalidTransition(
            f"Delivery {delivery_id} is {delivery.status} and cannot be cancelled"
        )
    if updated:
        logger.info("Cancelled email %s", delivery_id)
    return delivery
