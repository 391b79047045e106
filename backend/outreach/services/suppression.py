"""
Suppression rules.

A recipient is suppressed when its contact must not receive mail at all
(do-not-contact, bounced, already responded). The check runs when a
recipient is approved and again when it is claimed for sending.
Company-level suppression is triggered by hand when someone at a company
replies; the company cooldown only produces warnings when contacts are
added to a campaign.
"""
import logging
from datetime import timedelta, datetime
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlmodel import Session, func, select

from outreach.core.config import settings
from outreach.core.exceptions import NotFoundException, ValidationException
from outreach.core.security import create_log
from outreach.models.campaign import Campaign
from outreach.models.common import utcnow
from outreach.models.company import Company
from outreach.models.contact import Contact, OUTREACH_RESPONDED
from outreach.models.recipient import (
    CampaignRecipient,
    RECIPIENT_SUPPRESSED,
    SUPPRESSIBLE_STATUSES,
)

logger = logging.getLogger(__name__)


def suppress_recipient(recipient: CampaignRecipient, reason: str) -> None:
    recipient.status = RECIPIENT_SUPPRESSED
    recipient.approved = False
    recipient.suppression_reason = reason
    recipient.updated_at = utcnow()


def format_responded_reason(contact: Contact, company: Company, when: datetime) -> str:
    name = contact.full_name or contact.email or "A contact"
    return f"{name} at {company.name} responded on {when:%b} {when.day}"


class SuppressionPolicy:
    """Decides whether a recipient's contact may be mailed at all."""

    def __init__(self, session: Session):
        self.session = session

    def check(self, recipient: CampaignRecipient) -> Optional[str]:
        """Returns a human readable reason when the recipient must be suppressed."""
        contact = self.session.get(Contact, recipient.contact_id)
        if contact is None:
            return "Contact no longer exists"
        if contact.do_not_contact:
            return "Contact is on the do-not-contact list"
        if contact.email_bounced:
            return "Email address previously bounced"
        if contact.outreach_status == OUTREACH_RESPONDED:
            return "Contact already responded"
        return None

    def cooldown_warnings(self, campaign: Campaign, contacts: List[Contact]) -> List[Dict]:
        """
        Contacts whose company was emailed by another campaign within the
        campaign's ``company_cooldown_days``. Informational only; nothing is
        suppressed.
        """
        if campaign.company_cooldown_days <= 0:
            return []
        company_ids = {c.company_id for c in contacts if c.company_id}
        if not company_ids:
            return []

        cutoff = utcnow() - timedelta(days=campaign.company_cooldown_days)
        rows = self.session.exec(
            select(CampaignRecipient.company_id, func.max(CampaignRecipient.sent_at))
            .where(
                CampaignRecipient.company_id.in_(list(company_ids)),
                CampaignRecipient.campaign_id != campaign.id,
                CampaignRecipient.sent_at.is_not(None),
                CampaignRecipient.sent_at >= cutoff,
            )
            .group_by(CampaignRecipient.company_id)
        ).all()
        last_sent = dict(rows)
        if not last_sent:
            return []

        names = {
            company.id: company.name
            for company in self.session.exec(select(Company).where(Company.id.in_(list(last_sent)))).all()
        }
        return [
            {
                "contact_id": contact.id,
                "company_id": contact.company_id,
                "company": names.get(contact.company_id),
                "last_sent_at": last_sent[contact.company_id],
            }
            for contact in contacts
            if contact.company_id in last_sent
        ]


def suppress_company(
    session: Session,
    company_id: int,
    contact_id: int,
    actor: str = "system",
) -> Tuple[int, str]:
    """
    Suppress every unsent recipient at a company across all campaigns because
    ``contact_id`` replied. Marks the contact as responded.
    """
    company = session.get(Company, company_id)
    if not company:
        raise NotFoundException("Company not found", details={"company_id": company_id})
    contact = session.get(Contact, contact_id)
    if not contact:
        raise NotFoundException("Contact not found", details={"contact_id": contact_id})
    if contact.company_id is not None and contact.company_id != company_id:
        raise ValidationException(
            "Contact does not belong to this company",
            details={"company_id": company_id, "contact_id": contact_id},
        )

    local_now = datetime.now(ZoneInfo(settings.SEND_TIMEZONE))
    reason = format_responded_reason(contact, company, local_now)

    recipients = session.exec(
        select(CampaignRecipient).where(
            CampaignRecipient.company_id == company_id,
            CampaignRecipient.status.in_(SUPPRESSIBLE_STATUSES),
        )
    ).all()
    for recipient in recipients:
        suppress_recipient(recipient, reason)
        session.add(recipient)

    contact.outreach_status = OUTREACH_RESPONDED
    session.add(contact)

    create_log(
        session, "company_suppress", actor,
        f"company={company_id} contact={contact_id} suppressed={len(recipients)}",
        commit=False,
    )
    session.commit()
    logger.info(f"Company suppress: {len(recipients)} recipients at company {company_id} suppressed")
    return len(recipients), reason
