"""
Campaign model.

A campaign owns its content instructions, its pacing configuration and
the recipients it mails. Status moves through
draft -> generating -> ready -> sending <-> paused -> completed.
"""
from typing import Optional, List
from sqlmodel import SQLModel, Field
from pydantic import model_validator
from datetime import datetime

from outreach.models.common import utcnow
from outreach.models.event import EventRead
from outreach.models.sender_profile import SenderProfileRead
from outreach.models.recipient import CampaignRecipientDetail

CAMPAIGN_DRAFT = "draft"
CAMPAIGN_GENERATING = "generating"
CAMPAIGN_READY = "ready"
CAMPAIGN_SENDING = "sending"
CAMPAIGN_PAUSED = "paused"
CAMPAIGN_COMPLETED = "completed"

CAMPAIGN_STATUSES = (
    CAMPAIGN_DRAFT,
    CAMPAIGN_GENERATING,
    CAMPAIGN_READY,
    CAMPAIGN_SENDING,
    CAMPAIGN_PAUSED,
    CAMPAIGN_COMPLETED,
)

PACING_FIELDS = (
    "send_window_start",
    "send_window_end",
    "min_delay_seconds",
    "max_delay_seconds",
    "daily_send_limit",
)


class CampaignBase(SQLModel):
    name: str = Field(index=True)
    purpose: str

    # content instructions for the generator
    call_to_action: Optional[str] = None
    tone: Optional[str] = None
    must_include: Optional[str] = None
    must_avoid: Optional[str] = None
    max_words: int = Field(default=100, ge=20, le=1000)
    subject_prompt: Optional[str] = None
    context: Optional[str] = None
    reference_email: Optional[str] = None

    # sender
    sender_profile_id: Optional[int] = Field(default=None, foreign_key="sender_profile.id")
    reply_to: Optional[str] = None

    # pacing, hours are in settings.SEND_TIMEZONE
    send_window_start: int = Field(default=9, ge=0, le=23)
    send_window_end: int = Field(default=17, ge=1, le=24)
    min_delay_seconds: int = Field(default=120, ge=0)
    max_delay_seconds: int = Field(default=300, ge=0)
    daily_send_limit: int = Field(default=50, ge=1)

    # applied when contacts are added; neither suppresses anything
    one_per_company: bool = Field(default=False)
    company_cooldown_days: int = Field(default=30, ge=0)


class Campaign(CampaignBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    status: str = Field(default=CAMPAIGN_DRAFT, index=True)
    # status to restore when a generation run finishes or is cancelled
    status_before_generation: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CampaignCreate(CampaignBase):
    event_ids: List[int] = []

    @model_validator(mode="after")
    def check_pacing(self):
        if self.send_window_start >= self.send_window_end:
            raise ValueError("send_window_start must be before send_window_end")
        if self.min_delay_seconds > self.max_delay_seconds:
            raise ValueError("min_delay_seconds must not exceed max_delay_seconds")
        return self


class CampaignUpdate(SQLModel):
    name: Optional[str] = None
    status: Optional[str] = None
    purpose: Optional[str] = None
    call_to_action: Optional[str] = None
    tone: Optional[str] = None
    must_include: Optional[str] = None
    must_avoid: Optional[str] = None
    max_words: Optional[int] = Field(default=None, ge=20, le=1000)
    subject_prompt: Optional[str] = None
    context: Optional[str] = None
    reference_email: Optional[str] = None
    sender_profile_id: Optional[int] = None
    reply_to: Optional[str] = None
    send_window_start: Optional[int] = Field(default=None, ge=0, le=23)
    send_window_end: Optional[int] = Field(default=None, ge=1, le=24)
    min_delay_seconds: Optional[int] = Field(default=None, ge=0)
    max_delay_seconds: Optional[int] = Field(default=None, ge=0)
    daily_send_limit: Optional[int] = Field(default=None, ge=1)
    one_per_company: Optional[bool] = None
    company_cooldown_days: Optional[int] = Field(default=None, ge=0)
    event_ids: Optional[List[int]] = None


class CampaignRead(CampaignBase):
    id: int
    status: str
    created_at: datetime
    updated_at: datetime


class RecipientCounts(SQLModel):
    total: int = 0
    pending: int = 0
    generated: int = 0
    approved: int = 0
    sent: int = 0
    failed: int = 0
    suppressed: int = 0


class CampaignListItem(CampaignRead):
    recipient_counts: RecipientCounts


class CampaignDetail(CampaignRead):
    sender_profile: Optional[SenderProfileRead] = None
    events: List[EventRead] = []
    recipients: List[CampaignRecipientDetail] = []
    recipient_counts: RecipientCounts
