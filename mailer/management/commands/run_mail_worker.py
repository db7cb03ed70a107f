from django.core.management.base import BaseCommand
from mailer.worker import run_worker

class Command(BaseCommand):
    help = "Poll the email queue and send due deliveries"

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single polling cycle and exit")
        parser.add_argument("--interval", type=int, default=None, help="Seconds between polling cycles")
        parser.add_argument("--batch-size", type=int, default=None, help="Max emails claimed per cycle")

    def handle(self, *args, **options):
        run_worker(
            interval=options["interval"],
            once=options["once"],
            batch_size=options["batch_size"],
        )
        if options["once"]:
            self.stdout.write(self.style.SUCCESS("Email queue processed"))
