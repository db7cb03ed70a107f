from django.utils import timezone
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import campaigns, quota, store
from .exceptions import InvalidTransition, NotFound, ValidationError
from .models import Delivery
from .serializers import (
    CampaignDeliverySerializer,
    CampaignSerializer,
    CreateCampaignSerializer,
    DeliverySerializer,
    EnqueueEmailSerializer,
    QuotaSerializer,
)


def conflict(exc):
    return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)


class CampaignListView(APIView):
    def get(self, request):
        items = campaigns.list_campaigns()
        return Response(CampaignSerializer(items, many=True).data)

    def post(self, request):
        serializer = CreateCampaignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        scheduled_for = data.get("scheduled_for")
        required = len({r["email"].strip().lower() for r in data["recipients"]})
        remaining = quota.remaining()
        if (scheduled_for is None or scheduled_for <= timezone.now()) and remaining < required:
            return Response(
                {
                    "detail": (
                        f"Insufficient email quota. You can send {remaining} more emails today. "
                        f"This campaign requires {required} emails."
                    ),
                    "remaining": remaining,
                    "required": required,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            campaign = campaigns.create_campaign(
                data.get("name") or data["subject"],
                data["campaign_type"],
                data["recipients"],
                subject=data["subject"],
                html_body=data["body"],
                text_body=data.get("plain_text"),
                created_by=request.user.get_username(),
                priority=data["priority"],
                scheduled_for=scheduled_for,
            )
        except ValidationError as e:
            raise exceptions.ValidationError({"detail": str(e)})
        return Response(
            {
                "id": campaign.pk,
                "name": campaign.name,
                "status": campaign.status,
                "total_recipients": campaign.total_recipients,
                "remaining": remaining,
                "message": f"Queued {campaign.total_recipients} email(s)",
            },
            status=status.HTTP_201_CREATED,
        )


class CampaignDetailView(APIView):
    def get(self, request, pk):
        try:
            campaign = campaigns.get_campaign(pk)
        except NotFound:
            raise exceptions.NotFound()
        emails = Delivery.objects.filter(campaign=campaign).order_by("created_at")
        return Response(
            {
                "campaign": CampaignSerializer(campaign).data,
                "stats": campaigns.derive_stats(campaign),
                "emails": CampaignDeliverySerializer(emails, many=True).data,
            }
        )


class CampaignCancelView(APIView):
    def post(self, request, pk):
        try:
            campaign = campaigns.cancel_campaign(pk)
        except NotFound:
            raise exceptions.NotFound()
        except InvalidTransition as e:
            return conflict(e)
        return Response({"message": "Cancelled", "id": campaign.pk})


class QueueView(APIView):
    def get(self, request):
        items = store.list_deliveries(
            status=request.query_params.get("status") or None,
            take=request.query_params.get("take"),
        )
        return Response(DeliverySerializer(items, many=True).data)

    def post(self, request):
        serializer = EnqueueEmailSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            delivery_id = store.enqueue_email(
                data["to"],
                data["subject"],
                data["body"],
                text_body=data.get("plain_text"),
                priority=data["priority"],
                recipient_name=data.get("recipient_name"),
                scheduled_for=data.get("scheduled_for"),
            )
        except ValidationError as e:
            raise exceptions.ValidationError({"detail": str(e)})
        return Response({"id": delivery_id}, status=status.HTTP_201_CREATED)


class DeliveryDetailView(APIView):
    def get(self, request, pk):
        try:
            delivery = store.get_delivery(pk)
        except NotFound:
            raise exceptions.NotFound()
        return Response(DeliverySerializer(delivery).data)


class DeliveryCancelView(APIView):
    def post(self, request, pk):
        try:
            delivery = store.cancel_delivery(pk)
        except NotFound:
            raise exceptions.NotFound()
        except InvalidTransition as e:
            return conflict(e)
        return Response({"message": "Cancelled", "id": delivery.pk})


class QuotaView(APIView):
    def get(self, request):
        return Response(QuotaSerializer(quota.usage()).data)
