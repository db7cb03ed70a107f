import html
import logging
from email.utils import formataddr

from anymail.exceptions import AnymailError
from anymail.message import AnymailMessage
from django.conf import settings
from django.utils.html import strip_tags

from .exceptions import TransientSendError

logger = logging.getLogger(__name__)

REJECTED_STATUSES = {"rejected", "invalid", "failed"}


def plain_text_from_html(html_body) -> str:
    return html.unescape(strip_tags(html_body or "")).strip()


def _recipient(delivery) -> str:
    if delivery.recipient_name:
        return formataddr((delivery.recipient_name, delivery.recipient_email))
    return delivery.recipient_email


def send_delivery(delivery) -> str | None:
    """
    Hand one delivery to the configured email backend and return the
    provider message id. Any provider or network failure, including a
    timeout, surfaces as TransientSendError.
    """
    msg = AnymailMessage(
        subject=delivery.subject,
        body=delivery.text_body or plain_text_from_html(delivery.html_body),
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[_recipient(delivery)],
        headers={"X-Delivery-ID": str(delivery.pk)},
    )
    msg.attach_alternative(delivery.html_body, "text/html")
    msg.metadata = {"delivery_id": str(delivery.pk)}
    if delivery.campaign_id:
        msg.metadata["campaign_id"] = str(delivery.campaign_id)
        msg.tags = [delivery.campaign.campaign_type or delivery.campaign.name]
    try:
        msg.send()
    except (AnymailError, OSError) as e:
        raise TransientSendError(str(e) or e.__class__.__name__) from e

    status = getattr(msg, "anymail_status", None)
    if status is None:
        return None
    if status.status and status.status & REJECTED_STATUSES:
        raise TransientSendError(
            f"Provider reported {', '.join(sorted(status.status))} for {delivery.recipient_email}"
        )
    message_id = status.message_id
    if message_id is None:
        return None
    if isinstance(message_id, set):
        # one recipient per delivery, so at most one id
        message_id = next(iter(message_id), None)
    return str(message_id) if message_id else None
