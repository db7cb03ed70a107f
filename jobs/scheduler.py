import logging
import time
from datetime import timezone as dt_timezone

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import close_old_connections, transaction
from django.db.models.functions import Coalesce
from django.utils import timezone

from mailer.dates import ensure_aware, org_localtime
from mailer.exceptions import NotFound, ValidationError
from mailer.store import DEFAULT_PAGE_SIZE, clamp_take

from .handlers import get_handler
from .models import ScheduledEmailJob

logger = logging.getLogger(__name__)

RULES = {
    ScheduledEmailJob.DAILY: relativedelta(days=1),
    ScheduledEmailJob.WEEKLY: relativedelta(weeks=1),
    ScheduledEmailJob.MONTHLY: relativedelta(months=1),
    ScheduledEmailJob.YEARLY: relativedelta(years=1),
}


def next_run_after(rule, now):
    """
    Next occurrence of ``rule`` after ``now``. The step is taken on the
    organization's wall clock, so a weekly 10:00 job stays at 10:00 local
    time across DST changes. Month ends clamp (Jan 31 -> Feb 28).
    """
    try:
        step = RULES[rule]
    except KeyError:
        raise ValidationError(f"Unknown recurrence rule {rule!r}")
    local = org_localtime(ensure_aware(now))
    return (local + step).astimezone(dt_timezone.utc)


def schedule_job(
    job_type,
    entity_type,
    entity_id,
    scheduled_for,
    recurrence_rule=None,
    metadata=None,
) -> ScheduledEmailJob:
    if scheduled_for is None:
        raise ValidationError("scheduled_for is required")
    if recurrence_rule and recurrence_rule not in RULES:
        raise ValidationError(f"Unknown recurrence rule {recurrence_rule!r}")
    get_handler(job_type)
    job = ScheduledEmailJob.objects.create(
        job_type=job_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        scheduled_for=ensure_aware(scheduled_for),
        recurrence_rule=recurrence_rule or None,
        metadata=metadata or {},
    )
    logger.info(
        "Scheduled %s job %s for %s %s at %s (%s)",
        job_type,
        job.pk,
        entity_type,
        entity_id,
        job.scheduled_for,
        recurrence_rule or "once",
    )
    return job


def cancel_jobs_for_entity(entity_type, entity_id, now=None) -> int:
    now = now or timezone.now()
    cancelled = ScheduledEmailJob.objects.filter(
        entity_type=entity_type,
        entity_id=str(entity_id),
        status=ScheduledEmailJob.ACTIVE,
    ).update(status=ScheduledEmailJob.CANCELLED, updated_at=now)
    if cancelled:
        logger.info("Cancelled %d job(s) for %s %s", cancelled, entity_type, entity_id)
    return cancelled


def due_jobs(now):
    # a set next_run_date supersedes scheduled_for
    return (
        ScheduledEmailJob.objects.annotate(due_at=Coalesce("next_run_date", "scheduled_for"))
        .filter(status=ScheduledEmailJob.ACTIVE, due_at__lte=now)
        .order_by("due_at", "created_at")
    )


def _record_failure(job, error, now):
    job.failure_count += 1
    job.last_error = str(error) or error.__class__.__name__
    job.last_run_date = now
    if job.failure_count >= settings.SCHEDULED_JOB_MAX_FAILURES:
        job.status = ScheduledEmailJob.FAILED
        logger.error(
            "Scheduled job %s failed %d times and was disabled: %s",
            job.pk,
            job.failure_count,
            job.last_error,
        )
    job.save(update_fields=["failure_count", "last_error", "last_run_date", "status", "updated_at"])


def run_job(job_id, now):
    """
    Fire one due job under a row lock. Returns True when the handler ran,
    False when it raised, None when the job was no longer due or another
    runner holds it.
    """
    with transaction.atomic():
        job = (
            due_jobs(now)
            .select_for_update(skip_locked=True)
            .filter(pk=job_id)
            .first()
        )
        if job is None:
            return None
        try:
            handler = get_handler(job.job_type)
            with transaction.atomic():
                campaign = handler(job, now)
        except Exception as e:
            logger.exception("Scheduled job %s (%s) failed", job.pk, job.job_type)
            _record_failure(job, e, now)
            return False

        job.run_count += 1
        job.last_run_date = now
        job.failure_count = 0
        job.last_error = None
        if campaign is not None:
            job.last_campaign = campaign
        if job.recurrence_rule:
            job.next_run_date = next_run_after(job.recurrence_rule, now)
        else:
            job.status = ScheduledEmailJob.COMPLETED
            job.next_run_date = None
        job.save()

    logger.info(
        "Ran scheduled job %s (%s); next run %s",
        job.pk,
        job.job_type,
        job.next_run_date or "none",
    )
    return True


def tick(now=None) -> dict:
    now = now or timezone.now()
    summary = {"due": 0, "run": 0, "failed": 0, "skipped": 0}
    job_ids = list(due_jobs(now).values_list("pk", flat=True))
    summary["due"] = len(job_ids)
    for job_id in job_ids:
        outcome = run_job(job_id, now)
        if outcome is None:
            summary["skipped"] += 1
        elif outcome:
            summary["run"] += 1
        else:
            summary["failed"] += 1
    return summary


def get_job(job_id) -> ScheduledEmailJob:
    job = ScheduledEmailJob.objects.filter(pk=job_id).first()
    if job is None:
        raise NotFound(f"Scheduled job {job_id} not found")
    return job


def list_jobs(status=None, take=DEFAULT_PAGE_SIZE) -> list[ScheduledEmailJob]:
    qs = ScheduledEmailJob.objects.all()
    if status:
        qs = qs.filter(status=status)
    return list(qs.order_by("scheduled_for", "next_run_date")[: clamp_take(take)])


def reschedule_job(job_id, scheduled_for, now=None) -> ScheduledEmailJob:
    """Move a job to an absolute time and reactivate it if it had stopped."""
    if scheduled_for is None:
        raise ValidationError("scheduled_for is required")
    now = now or timezone.now()
    fields = {
        "scheduled_for": ensure_aware(scheduled_for),
        "next_run_date": None,
        "status": ScheduledEmailJob.ACTIVE,
        "updated_at": now,
    }
    with transaction.atomic():
        job = ScheduledEmailJob.objects.select_for_update().filter(pk=job_id).first()
        if job is None:
            raise NotFound(f"Scheduled job {job_id} not found")
        if job.status == ScheduledEmailJob.FAILED:
            fields.update(failure_count=0, last_error=None)
        ScheduledEmailJob.objects.filter(pk=job.pk).update(**fields)
    logger.info("Rescheduled job %s to %s", job_id, fields["scheduled_for"])
    return get_job(job_id)


def cancel_job(job_id, now=None) -> ScheduledEmailJob:
    now = now or timezone.now()
    updated = ScheduledEmailJob.objects.filter(pk=job_id).update(
        status=ScheduledEmailJob.CANCELLED, updated_at=now
    )
    if not updated:
        raise NotFound(f"Scheduled job {job_id} not found")
    logger.info("Cancelled scheduled job %s", job_id)
    return get_job(job_id)


def run_scheduler(interval=None, once=False):
    interval = interval or settings.SCHEDULED_JOB_POLL_SECONDS
    logger.info("Scheduled job runner started. Interval: %ss", interval)
    while True:
        try:
            summary = tick()
            if summary["due"]:
                logger.info("Scheduled job tick finished: %s", summary)
        except Exception:
            logger.exception("Error in scheduled job loop")
        finally:
            close_old_connections()
        if once:
            return
        time.sleep(interval)
