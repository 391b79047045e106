"""
Delivery events reported by the email provider's webhook.

Events are matched to a recipient by ``provider_message_id``. Delivered,
opened and clicked only ever move a recipient forward; bounces and
complaints also flag the contact so no later campaign mails them.
"""
import logging
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from outreach.models.common import utcnow
from outreach.models.contact import Contact
from outreach.models.recipient import (
    CampaignRecipient,
    DELIVERY_RANK,
    RECIPIENT_DELIVERED,
    RECIPIENT_OPENED,
    RECIPIENT_CLICKED,
    RECIPIENT_BOUNCED,
    RECIPIENT_FAILED,
)

logger = logging.getLogger(__name__)

EVENT_DELIVERED = "email.delivered"
EVENT_OPENED = "email.opened"
EVENT_CLICKED = "email.clicked"
EVENT_BOUNCED = "email.bounced"
EVENT_COMPLAINED = "email.complained"

# event -> (status, timestamp column)
PROGRESS_EVENTS = {
    EVENT_DELIVERED: (RECIPIENT_DELIVERED, "delivered_at"),
    EVENT_OPENED: (RECIPIENT_OPENED, "opened_at"),
    EVENT_CLICKED: (RECIPIENT_CLICKED, "clicked_at"),
}

HANDLED_EVENTS = set(PROGRESS_EVENTS) | {EVENT_BOUNCED, EVENT_COMPLAINED}


def bounce_type(data: Dict[str, Any]) -> Optional[str]:
    bounce = data.get("bounce")
    if isinstance(bounce, dict) and bounce.get("type"):
        return bounce["type"]
    return data.get("bounce_type")


def apply_delivery_event(session: Session, event_type: str, data: Dict[str, Any]) -> Optional[CampaignRecipient]:
    """
    Update the recipient an event refers to. Returns the recipient, or None
    when the event is unknown or matches nothing.
    """
    if event_type not in HANDLED_EVENTS:
        logger.info(f"Delivery webhook: unhandled event type {event_type}")
        return None

    message_id = data.get("email_id")
    if not message_id:
        return None

    recipient = session.exec(
        select(CampaignRecipient).where(CampaignRecipient.provider_message_id == message_id)
    ).first()
    if not recipient:
        logger.info(f"Delivery webhook: no recipient for {message_id} ({event_type})")
        return None

    now = utcnow()
    if event_type in PROGRESS_EVENTS:
        status, column = PROGRESS_EVENTS[event_type]
        if getattr(recipient, column) is None:
            setattr(recipient, column, now)
        current_rank = DELIVERY_RANK.get(recipient.status)
        if current_rank is not None and DELIVERY_RANK[status] > current_rank:
            recipient.status = status
    else:
        contact = session.get(Contact, recipient.contact_id)
        if event_type == EVENT_BOUNCED:
            kind = bounce_type(data)
            recipient.status = RECIPIENT_BOUNCED
            recipient.error = f"Bounced: {kind}" if kind else "Email bounced"
            if contact:
                contact.email_bounced = True
        else:
            recipient.status = RECIPIENT_FAILED
            recipient.error = "Spam complaint received"
            if contact:
                contact.do_not_contact = True
        if contact:
            session.add(contact)

    recipient.updated_at = now
    session.add(recipient)
    session.commit()
    session.refresh(recipient)
    logger.info(f"Delivery webhook: {event_type} for {message_id} -> {recipient.status}")
    return recipient
