"""
Campaign recipient: one row per (campaign, contact) with the generated
email and its delivery status.
"""
from typing import Optional, List
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime

from outreach.models.common import utcnow
from outreach.models.company import CompanySummary
from outreach.models.contact import ContactSummary

RECIPIENT_PENDING = "pending"
RECIPIENT_GENERATED = "generated"
RECIPIENT_APPROVED = "approved"
RECIPIENT_QUEUED = "queued"
RECIPIENT_SENT = "sent"
RECIPIENT_DELIVERED = "delivered"
RECIPIENT_OPENED = "opened"
RECIPIENT_CLICKED = "clicked"
RECIPIENT_BOUNCED = "bounced"
RECIPIENT_FAILED = "failed"
RECIPIENT_SUPPRESSED = "suppressed"

RECIPIENT_STATUSES = (
    RECIPIENT_PENDING,
    RECIPIENT_GENERATED,
    RECIPIENT_APPROVED,
    RECIPIENT_QUEUED,
    RECIPIENT_SENT,
    RECIPIENT_DELIVERED,
    RECIPIENT_OPENED,
    RECIPIENT_CLICKED,
    RECIPIENT_BOUNCED,
    RECIPIENT_FAILED,
    RECIPIENT_SUPPRESSED,
)

# statuses that count as "sent" for progress and daily caps
SENT_STATUSES = (RECIPIENT_SENT, RECIPIENT_DELIVERED, RECIPIENT_OPENED, RECIPIENT_CLICKED)
DELETABLE_STATUSES = (RECIPIENT_PENDING, RECIPIENT_GENERATED, RECIPIENT_FAILED)
EDITABLE_STATUSES = (RECIPIENT_GENERATED, RECIPIENT_APPROVED, RECIPIENT_SUPPRESSED)
REGENERATABLE_STATUSES = (RECIPIENT_PENDING, RECIPIENT_GENERATED, RECIPIENT_APPROVED, RECIPIENT_FAILED)
# company-level suppression only touches mail that has not gone out
SUPPRESSIBLE_STATUSES = (RECIPIENT_GENERATED, RECIPIENT_APPROVED, RECIPIENT_QUEUED)

# webhook events may only move a recipient forward along this ladder
DELIVERY_RANK = {
    RECIPIENT_SENT: 1,
    RECIPIENT_DELIVERED: 2,
    RECIPIENT_OPENED: 3,
    RECIPIENT_CLICKED: 4,
}


class CampaignRecipientBase(SQLModel):
    campaign_id: int = Field(foreign_key="campaign.id", index=True)
    contact_id: int = Field(foreign_key="contact.id", index=True)
    company_id: Optional[int] = Field(default=None, foreign_key="company.id", index=True)

    subject: Optional[str] = None
    body: Optional[str] = None
    body_html: Optional[str] = None

    status: str = Field(default=RECIPIENT_PENDING, index=True)
    approved: bool = Field(default=False)
    suppression_reason: Optional[str] = None
    error: Optional[str] = None

    generated_at: Optional[datetime] = None
    sent_at: Optional[datetime] = Field(default=None, index=True)
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    provider_message_id: Optional[str] = Field(default=None, index=True)


class CampaignRecipient(CampaignRecipientBase, table=True):
    __tablename__ = "campaign_recipient"
    __table_args__ = (
        UniqueConstraint("campaign_id", "contact_id", name="uq_campaign_recipient_contact"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class CampaignRecipientRead(CampaignRecipientBase):
    id: int
    created_at: datetime


class CampaignRecipientDetail(CampaignRecipientRead):
    contact: Optional[ContactSummary] = None
    company: Optional[CompanySummary] = None


class CampaignRecipientUpdate(SQLModel):
    """
    Operator edit of one recipient.

    ``subject``/``body`` rewrite the content; ``status``/``approved`` are
    mapped onto the review actions (approve, unapprove, suppress,
    unsuppress) rather than written directly.
    """
    subject: Optional[str] = None
    body: Optional[str] = None
    status: Optional[str] = None
    approved: Optional[bool] = None
    suppression_reason: Optional[str] = None


class RecipientAdd(SQLModel):
    contact_ids: List[int]


class RecipientBulkDelete(SQLModel):
    recipientIds: List[int]


class RecipientBulkApprove(SQLModel):
    recipientIds: Optional[List[int]] = None
    all: bool = False
    approved: bool = True
