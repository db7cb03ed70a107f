"""
Job handlers, keyed by ``ScheduledEmailJob.job_type``.

A handler is called as ``handler(job, now)`` when its job fires and returns
the campaign it produced, or None. Raising marks the run as failed.
"""
import logging

from mailer.campaigns import create_campaign
from mailer.dates import org_localtime
from mailer.exceptions import ValidationError
from mailer.models import Delivery

logger = logging.getLogger(__name__)

HANDLERS = {}


class UnknownJobType(ValidationError):
    pass


def register(job_type):
    def decorator(func):
        if job_type in HANDLERS and HANDLERS[job_type] is not func:
            logger.warning("Replacing handler for job type %s", job_type)
        HANDLERS[job_type] = func
        return func

    return decorator


def get_handler(job_type):
    try:
        return HANDLERS[job_type]
    except KeyError:
        raise UnknownJobType(f"No handler registered for job type {job_type!r}")


@register("Broadcast")
def broadcast(job, now):
    """Fan the job's stored message out to its recipient list as a new campaign."""
    meta = job.metadata or {}
    name = meta.get("name") or f"{job.entity_type} {job.entity_id}"
    if job.recurrence_rule:
        # one campaign per occurrence
        name = f"{name} ({org_localtime(now):%Y-%m-%d})"
    return create_campaign(
        name,
        meta.get("campaign_type") or job.job_type,
        meta.get("recipients") or [],
        subject=meta.get("subject"),
        html_body=meta.get("html_body"),
        text_body=meta.get("text_body"),
        created_by=meta.get("created_by") or f"job:{job.pk}",
        metadata={"scheduled_job_id": str(job.pk)},
        priority=meta.get("priority", Delivery.DEFAULT_PRIORITY),
        now=now,
    )
