from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header
from sqlmodel import Session

from outreach.core.config import settings
from outreach.core.db import get_session
from outreach.core.exceptions import InvalidWebhookSignatureException, ValidationException
from outreach.services.delivery_events import apply_delivery_event

router = APIRouter()


@router.post("/resend")
def resend_webhook(
    payload: Dict[str, Any] = Body(...),
    svix_signature: Optional[str] = Header(default=None),
    session: Session = Depends(get_session)
):
    """
    Delivery events from Resend. Configure this URL in the Resend dashboard.

    When RESEND_WEBHOOK_SECRET is set the svix-signature header must be present.
    """
    if settings.RESEND_WEBHOOK_SECRET and not svix_signature:
        raise InvalidWebhookSignatureException()

    event_type = payload.get("type")
    data = payload.get("data")
    if not event_type or not isinstance(data, dict):
        raise ValidationException("Invalid webhook payload")

    recipient = apply_delivery_event(session, event_type, data)
    return {
        "received": True,
        "recipient_id": recipient.id if recipient else None,
    }
