"""
Recipients of one campaign: review, edit, delete and regenerate.
"""
from typing import List, Optional, Sequence
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from outreach.api.deps import get_actor, get_email_generator
from outreach.core.db import get_session
from outreach.core.exceptions import ValidationException
from outreach.models.company import Company, CompanySummary
from outreach.models.contact import Contact, ContactSummary
from outreach.models.recipient import (
    CampaignRecipient,
    CampaignRecipientDetail,
    CampaignRecipientUpdate,
    RecipientAdd,
    RecipientBulkDelete,
    RECIPIENT_PENDING,
    RECIPIENT_GENERATED,
    RECIPIENT_APPROVED,
    RECIPIENT_SUPPRESSED,
)
from outreach.services.email_generator import EmailGenerator
from outreach.services.generation import ContentGenerator
from outreach.services.lifecycle import RecipientReview, load_campaign, load_recipient

router = APIRouter()


def recipient_details(session: Session, recipients: Sequence[CampaignRecipient]) -> List[CampaignRecipientDetail]:
    """Attach contact and company summaries to recipient rows."""
    contact_ids = {r.contact_id for r in recipients}
    company_ids = {r.company_id for r in recipients if r.company_id}
    contacts = {}
    companies = {}
    if contact_ids:
        contacts = {c.id: c for c in session.exec(select(Contact).where(Contact.id.in_(contact_ids))).all()}
    if company_ids:
        companies = {c.id: c for c in session.exec(select(Company).where(Company.id.in_(company_ids))).all()}

    details = []
    for r in recipients:
        contact = contacts.get(r.contact_id)
        company = companies.get(r.company_id) if r.company_id else None
        details.append(CampaignRecipientDetail(
            **r.model_dump(),
            contact=ContactSummary.model_validate(contact) if contact else None,
            company=CompanySummary.model_validate(company) if company else None,
        ))
    return details


@router.get("/", response_model=List[CampaignRecipientDetail])
def get_recipients(
    campaign_id: int,
    status: Optional[str] = None,
    session: Session = Depends(get_session)
):
    campaign = load_campaign(session, campaign_id)
    query = select(CampaignRecipient).where(CampaignRecipient.campaign_id == campaign.id)
    if status:
        query = query.where(CampaignRecipient.status == status)
    recipients = session.exec(query.order_by(CampaignRecipient.created_at, CampaignRecipient.id)).all()
    return recipient_details(session, recipients)


@router.post("/")
def add_recipients(
    campaign_id: int,
    body: RecipientAdd,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    campaign = load_campaign(session, campaign_id)
    added, skipped, warnings = RecipientReview(session, campaign, actor).add(body.contact_ids)
    return {"success": True, "added": added, "skipped": skipped, "cooldown_warnings": warnings}


@router.delete("/bulk")
def bulk_delete_recipients(
    campaign_id: int,
    body: RecipientBulkDelete,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """Delete the deletable ones; sent, approved and suppressed rows are skipped."""
    campaign = load_campaign(session, campaign_id)
    deleted, skipped = RecipientReview(session, campaign, actor).bulk_delete(body.recipientIds)
    return {"success": True, "deleted": deleted, "skipped": skipped}


@router.get("/{recipient_id}", response_model=CampaignRecipientDetail)
def get_recipient(
    campaign_id: int,
    recipient_id: int,
    session: Session = Depends(get_session)
):
    campaign = load_campaign(session, campaign_id)
    recipient = load_recipient(session, campaign, recipient_id)
    return recipient_details(session, [recipient])[0]


@router.patch("/{recipient_id}", response_model=CampaignRecipientDetail)
def update_recipient(
    campaign_id: int,
    recipient_id: int,
    updates: CampaignRecipientUpdate,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """
    Edit subject/body, then apply a status change if one was asked for.

    ``approved: true|false`` is shorthand for ``status: approved|generated``.
    Leaving ``suppressed`` goes through unsuppress, which picks approved or
    pending depending on whether the email has content.
    """
    campaign = load_campaign(session, campaign_id)
    recipient = load_recipient(session, campaign, recipient_id)
    review = RecipientReview(session, campaign, actor)

    if updates.subject is not None or updates.body is not None:
        review.edit(recipient, subject=updates.subject, body=updates.body)

    target = updates.status
    if target is None and updates.approved is not None:
        target = RECIPIENT_APPROVED if updates.approved else RECIPIENT_GENERATED

    if target and target != recipient.status:
        if target == RECIPIENT_SUPPRESSED:
            review.suppress(recipient, updates.suppression_reason)
        elif recipient.status == RECIPIENT_SUPPRESSED and target in (RECIPIENT_APPROVED, RECIPIENT_PENDING):
            review.unsuppress(recipient)
        elif target == RECIPIENT_APPROVED:
            review.approve(recipient)
        elif target == RECIPIENT_GENERATED:
            review.unapprove(recipient)
        else:
            raise ValidationException(
                f"Status '{target}' cannot be set directly",
                details={"status": target},
            )

    return recipient_details(session, [recipient])[0]


@router.delete("/{recipient_id}")
def delete_recipient(
    campaign_id: int,
    recipient_id: int,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    campaign = load_campaign(session, campaign_id)
    recipient = load_recipient(session, campaign, recipient_id)
    RecipientReview(session, campaign, actor).delete(recipient)
    return {"success": True, "message": "Recipient deleted"}


@router.post("/{recipient_id}/regenerate", response_model=CampaignRecipientDetail)
def regenerate_recipient(
    campaign_id: int,
    recipient_id: int,
    session: Session = Depends(get_session),
    generator: EmailGenerator = Depends(get_email_generator),
):
    """Write a fresh email for one recipient. It comes back unapproved."""
    campaign = load_campaign(session, campaign_id)
    recipient = load_recipient(session, campaign, recipient_id)
    ContentGenerator(session, generator).regenerate(campaign, recipient)
    return recipient_details(session, [recipient])[0]
