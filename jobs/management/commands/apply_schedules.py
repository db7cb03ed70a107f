from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone
from django_rq import get_scheduler
from jobs.tasks import process_email_queue, run_scheduled_jobs

class Command(BaseCommand):
    help = "Register the email queue and scheduled job runners with rq-scheduler"

    def handle(self, *args, **options):
        scheduler = get_scheduler("default")
        # Clear existing registrations to avoid duplicates
        for job in scheduler.get_jobs():
            if job.func_name.endswith(("process_email_queue", "run_scheduled_jobs")):
                scheduler.cancel(job)
        schedules = [
            (process_email_queue, settings.EMAIL_QUEUE_POLL_SECONDS, "mail"),
            (run_scheduled_jobs, settings.SCHEDULED_JOB_POLL_SECONDS, "default"),
        ]
        for func, interval, queue_name in schedules:
            scheduler.schedule(
                scheduled_time=timezone.now(),
                func=func,
                interval=interval,
                repeat=None,
                queue_name=queue_name,
            )
            self.stdout.write(self.style.SUCCESS(f"Scheduled {func.__name__} every {interval}s on '{queue_name}'"))
