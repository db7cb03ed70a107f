from unittest import mock

import pytest
from django.core.management import call_command

from jobs import tasks

pytestmark = pytest.mark.django_db


def test_apply_schedules_replaces_registrations(settings):
    scheduler = mock.Mock()
    old = mock.Mock(func_name="jobs.tasks.process_email_queue")
    unrelated = mock.Mock(func_name="reports.tasks.nightly")
    scheduler.get_jobs.return_value = [old, unrelated]

    with mock.patch("jobs.management.commands.apply_schedules.get_scheduler", return_value=scheduler):
        call_command("apply_schedules")

    scheduler.cancel.assert_called_once_with(old)
    scheduled = {c.kwargs["func"]: c.kwargs for c in scheduler.schedule.call_args_list}
    assert scheduled[tasks.process_email_queue]["interval"] == settings.EMAIL_QUEUE_POLL_SECONDS
    assert scheduled[tasks.process_email_queue]["queue_name"] == "mail"
    assert scheduled[tasks.run_scheduled_jobs]["interval"] == settings.SCHEDULED_JOB_POLL_SECONDS
    assert scheduled[tasks.run_scheduled_jobs]["queue_name"] == "default"


def test_run_mail_worker_once():
    with mock.patch("mailer.management.commands.run_mail_worker.run_worker") as run:
        call_command("run_mail_worker", "--once", "--batch-size", "3")
    run.assert_called_once_with(interval=None, once=True, batch_size=3)


def test_run_scheduled_jobs_once():
    with mock.patch("jobs.management.commands.run_scheduled_jobs.run_scheduler") as run:
        call_command("run_scheduled_jobs", "--once", "--interval", "60")
    run.assert_called_once_with(interval=60, once=True)


def test_tasks_run_one_cycle():
    with mock.patch("jobs.tasks.process_queue", return_value={"claimed": 1, "sent": 1}) as cycle:
        assert tasks.process_email_queue() == {"claimed": 1, "sent": 1}
    cycle.assert_called_once_with()

    with mock.patch("jobs.tasks.tick", return_value={"due": 0}) as tick:
        assert tasks.run_scheduled_jobs() == {"due": 0}
    tick.assert_called_once_with()
