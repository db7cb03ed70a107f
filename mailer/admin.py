from django.contrib import admin
from .models import Campaign, Delivery, EmailEvent, EmailQuota


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "campaign_type", "status", "total_recipients", "created_at", "completed_at")
    list_filter = ("status", "campaign_type")
    search_fields = ("name", "created_by")


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ("id", "recipient_email", "subject", "status", "priority", "retry_count", "next_retry_at", "sent_at")
    list_filter = ("status",)
    search_fields = ("recipient_email", "campaign__name", "provider_message_id")
    readonly_fields = ("claimed_by", "lease_expires_at", "provider_message_id", "created_at", "updated_at")


@admin.register(EmailQuota)
class EmailQuotaAdmin(admin.ModelAdmin):
    list_display = ("date", "emails_sent", "reserved", "updated_at")


@admin.register(EmailEvent)
class EmailEventAdmin(admin.ModelAdmin):
    list_display = ("id", "delivery", "event", "email", "timestamp")
    list_filter = ("event",)
    search_fields = ("email", "provider_message_id")
