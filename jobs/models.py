import uuid

from django.db import models


class ScheduledEmailJob(models.Model):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"
    STATUS_CHOICES = [
        (ACTIVE, "Active"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
        (FAILED, "Failed"),
    ]

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    RECURRENCE_CHOICES = [
        (DAILY, "Daily"),
        (WEEKLY, "Weekly"),
        (MONTHLY, "Monthly"),
        (YEARLY, "Yearly"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # key into the handler registry, e.g. EventReminder, Broadcast
    job_type = models.CharField(max_length=50)
    entity_type = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=64)
    scheduled_for = models.DateTimeField()
    recurrence_rule = models.CharField(
        max_length=10, choices=RECURRENCE_CHOICES, blank=True, null=True
    )
    next_run_date = models.DateTimeField(blank=True, null=True)
    last_run_date = models.DateTimeField(blank=True, null=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ACTIVE)
    run_count = models.PositiveIntegerField(default=0)
    failure_count = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, null=True)
    last_campaign = models.ForeignKey(
        "mailer.Campaign",
        related_name="+",
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["scheduled_for"]
        indexes = [
            models.Index(
                fields=["status", "scheduled_for", "next_run_date"],
                name="job_active_idx",
            ),
            models.Index(fields=["entity_type", "entity_id"], name="job_entity_idx"),
        ]

    def __str__(self):
        return f"{self.job_type} for {self.entity_type} {self.entity_id}"

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule)
