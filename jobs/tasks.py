import logging

from django_rq import job

from mailer.worker import process_queue

from .scheduler import tick

logger = logging.getLogger(__name__)


@job("mail")
def process_email_queue():
    summary = process_queue()
    if any(summary.values()):
        logger.info("Email queue run: %s", summary)
    return summary


@job("default")
def run_scheduled_jobs():
    summary = tick()
    if summary["due"]:
        logger.info("Scheduled job run: %s", summary)
    return summary
