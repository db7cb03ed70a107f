from django.contrib import admin
from .models import ScheduledEmailJob


@admin.register(ScheduledEmailJob)
class ScheduledEmailJobAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "job_type",
        "entity_type",
        "entity_id",
        "status",
        "recurrence_rule",
        "scheduled_for",
        "next_run_date",
        "run_count",
        "failure_count",
    )
    list_filter = ("status", "job_type", "recurrence_rule")
    search_fields = ("entity_type", "entity_id")
    readonly_fields = ("run_count", "failure_count", "last_error", "last_run_date", "last_campaign")
