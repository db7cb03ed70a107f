from datetime import timezone as dt_timezone

from rest_framework import serializers

from .models import ScheduledEmailJob


class ScheduledEmailJobSerializer(serializers.ModelSerializer):
    class Meta:
        model = ScheduledEmailJob
        fields = [
            "id",
            "job_type",
            "entity_type",
            "entity_id",
            "scheduled_for",
            "recurrence_rule",
            "next_run_date",
            "last_run_date",
            "status",
            "run_count",
            "failure_count",
            "last_error",
            "last_campaign",
            "metadata",
            "created_at",
            "updated_at",
        ]


class RescheduleSerializer(serializers.Serializer):
    scheduled_for = serializers.DateTimeField(default_timezone=dt_timezone.utc)
