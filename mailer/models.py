import uuid

from django.conf import settings
from django.db import models
from django.db.models.functions import Lower


class Campaign(models.Model):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    STATUS_CHOICES = [
        (ACTIVE, "Active"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    # free-form tag, e.g. EventAnnouncement, EventReminder
    campaign_type = models.CharField(max_length=50)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ACTIVE)
    total_recipients = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    created_by = models.CharField(max_length=255, blank=True, null=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="campaign_status_idx"),
            models.Index(fields=["created_at"], name="campaign_created_idx"),
        ]

    def __str__(self):
        return self.name


class Delivery(models.Model):
    PENDING = "Pending"
    SCHEDULED = "Scheduled"
    SENDING = "Sending"
    SENT = "Sent"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (SCHEDULED, "Scheduled"),
        (SENDING, "Sending"),
        (SENT, "Sent"),
        (FAILED, "Failed"),
        (CANCELLED, "Cancelled"),
    ]

    DEFAULT_PRIORITY = 5

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    campaign = models.ForeignKey(
        Campaign,
        related_name="deliveries",
        on_delete=models.PROTECT,
        blank=True,
        null=True,
    )
    recipient_email = models.EmailField(max_length=255)
    recipient_name = models.CharField(max_length=255, blank=True, null=True)
    subject = models.CharField(max_length=500)
    html_body = models.TextField()
    text_body = models.TextField(blank=True, null=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    # lower value is attempted first
    priority = models.IntegerField(default=DEFAULT_PRIORITY)
    scheduled_for = models.DateTimeField(blank=True, null=True)
    retry_count = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(blank=True, null=True)
    sent_at = models.DateTimeField(blank=True, null=True)
    failed_at = models.DateTimeField(blank=True, null=True)
    error_message = models.TextField(blank=True, null=True)
    provider_message_id = models.CharField(max_length=255, blank=True, null=True)
    claimed_by = models.CharField(max_length=128, blank=True, null=True)
    lease_expires_at = models.DateTimeField(blank=True, null=True)
    # quota day holding the reservation for the current claim
    quota_date = models.DateField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "deliveries"
        constraints = [
            models.UniqueConstraint(
                models.F("campaign"),
                Lower("recipient_email"),
                condition=models.Q(campaign__isnull=False),
                name="uq_delivery_campaign_recipient",
            ),
        ]
        indexes = [
            models.Index(
                fields=["status", "scheduled_for", "next_retry_at"],
                name="delivery_processing_idx",
            ),
            models.Index(fields=["updated_at"], name="delivery_updated_idx"),
            models.Index(fields=["provider_message_id"], name="delivery_provider_idx"),
        ]

    def __str__(self):
        return f"{self.subject} -> {self.recipient_email}"

    @property
    def is_permanently_failed(self) -> bool:
        return (
            self.status == self.FAILED
            and self.retry_count >= settings.EMAIL_MAX_RETRIES
        )


class EmailQuota(models.Model):
    # organization-local calendar day
    date = models.DateField(unique=True)
    emails_sent = models.PositiveIntegerField(default=0)
    reserved = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date"]

    def __str__(self):
        return f"{self.date}: {self.emails_sent} sent"


class EmailEvent(models.Model):
    delivery = models.ForeignKey(
        Delivery,
        related_name="events",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    event = models.CharField(max_length=32)
    provider_message_id = models.CharField(max_length=255, blank=True, null=True)
    email = models.EmailField(blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)
    payload = models.JSONField(default=dict, blank=True)
