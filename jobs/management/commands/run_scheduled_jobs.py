from django.core.management.base import BaseCommand
from jobs.scheduler import run_scheduler

class Command(BaseCommand):
    help = "Poll for due scheduled email jobs and run their handlers"

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
        parser.add_argument("--interval", type=int, default=None, help="Seconds between ticks")

    def handle(self, *args, **options):
        run_scheduler(interval=options["interval"], once=options["once"])
        if options["once"]:
            self.stdout.write(self.style.SUCCESS("Scheduled jobs processed"))
