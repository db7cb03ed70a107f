from datetime import timezone as dt_timezone

from rest_framework import serializers

from .campaigns import derive_stats
from .models import Campaign, Delivery


class CampaignSerializer(serializers.ModelSerializer):
    stats = serializers.SerializerMethodField()

    class Meta:
        model = Campaign
        fields = [
            "id",
            "name",
            "campaign_type",
            "status",
            "total_recipients",
            "created_at",
            "completed_at",
            "created_by",
            "metadata",
            "stats",
        ]

    def get_stats(self, obj):
        stats = getattr(obj, "stats", None)
        if stats is None:
            stats = derive_stats(obj)
        return stats


class CampaignDeliverySerializer(serializers.ModelSerializer):
    class Meta:
        model = Delivery
        fields = [
            "id",
            "recipient_email",
            "recipient_name",
            "subject",
            "status",
            "retry_count",
            "next_retry_at",
            "sent_at",
            "failed_at",
            "error_message",
        ]


class DeliverySerializer(serializers.ModelSerializer):
    is_permanently_failed = serializers.BooleanField(read_only=True)

    class Meta:
        model = Delivery
        fields = [
            "id",
            "campaign",
            "recipient_email",
            "recipient_name",
            "subject",
            "html_body",
            "text_body",
            "status",
            "priority",
            "scheduled_for",
            "retry_count",
            "next_retry_at",
            "sent_at",
            "failed_at",
            "error_message",
            "provider_message_id",
            "is_permanently_failed",
            "created_at",
            "updated_at",
        ]


class EnqueueEmailSerializer(serializers.Serializer):
    to = serializers.EmailField(max_length=255)
    subject = serializers.CharField(max_length=500)
    body = serializers.CharField()
    plain_text = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    priority = serializers.IntegerField(required=False, default=Delivery.DEFAULT_PRIORITY)
    recipient_name = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=255
    )
    scheduled_for = serializers.DateTimeField(
        required=False, allow_null=True, default_timezone=dt_timezone.utc
    )


class CampaignRecipientSerializer(serializers.Serializer):
    email = serializers.CharField(max_length=255)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)


class CreateCampaignSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    campaign_type = serializers.CharField(required=False, default="Broadcast", max_length=50)
    subject = serializers.CharField(max_length=500)
    body = serializers.CharField()
    plain_text = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    recipients = CampaignRecipientSerializer(many=True, allow_empty=False)
    priority = serializers.IntegerField(required=False, default=Delivery.DEFAULT_PRIORITY)
    scheduled_for = serializers.DateTimeField(
        required=False, allow_null=True, default_timezone=dt_timezone.utc
    )


class QuotaSerializer(serializers.Serializer):
    date = serializers.DateField()
    limit = serializers.IntegerField()
    sent = serializers.IntegerField()
    reserved = serializers.IntegerField()
    remaining = serializers.IntegerField()
