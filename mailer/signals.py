import logging

from anymail.signals import tracking
from django.core.exceptions import ValidationError as DjangoValidationError
from django.dispatch import receiver

from .models import Delivery, EmailEvent

logger = logging.getLogger(__name__)


def _match_delivery(event):
    metadata = event.metadata or {}
    delivery_id = metadata.get("delivery_id")
    if delivery_id:
        try:
            delivery = Delivery.objects.filter(pk=delivery_id).first()
        except (ValueError, DjangoValidationError):
            delivery = None
        if delivery:
            return delivery
    if event.message_id:
        return Delivery.objects.filter(provider_message_id=event.message_id).first()
    return None


@receiver(tracking)
def handle_tracking(sender, event, esp_name, **kwargs):
    delivery = _match_delivery(event)
    EmailEvent.objects.create(
        delivery=delivery,
        event=event.event_type,
        provider_message_id=event.message_id,
        email=event.recipient or "",
        payload=event.esp_event if isinstance(event.esp_event, dict) else {},
    )
    if event.event_type in {"bounced", "complained", "rejected"}:
        logger.warning(
            "%s reported %s for %s (delivery %s)",
            esp_name,
            event.event_type,
            event.recipient,
            delivery.pk if delivery else "unknown",
        )
