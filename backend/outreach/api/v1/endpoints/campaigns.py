"""
Campaign API: CRUD, generation, review and sending.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from outreach.api.deps import get_actor, get_email_generator, get_email_provider
from outreach.api.v1.endpoints.recipients import recipient_details
from outreach.core.concurrency import get_send_driver
from outreach.core.db import get_session
from outreach.core.security import create_log
from outreach.core.exceptions import (
    InvalidTransitionException,
    SendInProgressException,
    ValidationException,
)
from outreach.models.campaign import (
    Campaign,
    CampaignCreate,
    CampaignUpdate,
    CampaignRead,
    CampaignListItem,
    CampaignDetail,
    RecipientCounts,
    CAMPAIGN_GENERATING,
    CAMPAIGN_READY,
    CAMPAIGN_SENDING,
    CAMPAIGN_PAUSED,
)
from outreach.models.event import CampaignEvent, Event, EventRead
from outreach.models.recipient import CampaignRecipient, RecipientBulkApprove, RECIPIENT_PENDING
from outreach.models.sender_profile import SenderProfile, SenderProfileRead
from outreach.services.email_generator import EmailGenerator
from outreach.services.email_provider import ResendClient
from outreach.services.generation import ContentGenerator
from outreach.services.lifecycle import (
    CAMPAIGN_TRANSITIONS,
    RecipientReview,
    count_recipients,
    count_with_status,
    delete_campaign as remove_campaign,
    end_generation,
    load_campaign,
    set_campaign_events,
    transition_campaign,
    update_campaign as apply_campaign_update,
)
from outreach.services.send_dispatcher import CampaignSendDispatcher
from outreach.services.suppression import suppress_company
from outreach.tasks import generate_campaign_content, schedule_campaign_send

router = APIRouter()


class GenerateRequest(BaseModel):
    batch_size: Optional[int] = Field(default=None, ge=1, le=100)
    all: bool = False
    background: bool = False


class StartRequest(BaseModel):
    schedule: bool = True


class TestSendRequest(BaseModel):
    recipientId: int
    sendTo: str


class CompanySuppressRequest(BaseModel):
    company_id: int
    contact_id: int


def _list_item(session: Session, campaign: Campaign) -> CampaignListItem:
    return CampaignListItem(
        **campaign.model_dump(),
        recipient_counts=RecipientCounts(**count_recipients(session, campaign.id)),
    )


# ==================== CRUD ====================

@router.get("/", response_model=List[CampaignListItem])
def get_campaigns(
    skip: int = 0,
    limit: int = 50,
    status: Optional[str] = None,
    session: Session = Depends(get_session)
):
    """List campaigns, newest first, with recipient counts."""
    query = select(Campaign)
    if status:
        query = query.where(Campaign.status == status)
    query = query.order_by(Campaign.created_at.desc(), Campaign.id.desc()).offset(skip).limit(limit)
    return [_list_item(session, c) for c in session.exec(query).all()]


@router.post("/", response_model=CampaignRead)
def create_campaign(
    campaign_in: CampaignCreate,
    session: Session = Depends(get_session)
):
    if not campaign_in.name.strip() or not campaign_in.purpose.strip():
        raise ValidationException("name and purpose are required")
    if campaign_in.sender_profile_id is not None and not session.get(SenderProfile, campaign_in.sender_profile_id):
        raise ValidationException(
            "Sender profile not found",
            details={"sender_profile_id": campaign_in.sender_profile_id},
        )

    campaign = Campaign(**campaign_in.model_dump(exclude={"event_ids"}))
    session.add(campaign)
    session.flush()
    set_campaign_events(session, campaign, campaign_in.event_ids)
    session.commit()
    session.refresh(campaign)
    return campaign


@router.post("/suppress")
def suppress_company_recipients(
    body: CompanySuppressRequest,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """A contact replied: pull every unsent email to their company, in every campaign."""
    suppressed, reason = suppress_company(session, body.company_id, body.contact_id, actor=actor)
    return {"success": True, "suppressed": suppressed, "reason": reason}


@router.get("/{campaign_id}", response_model=CampaignDetail)
def get_campaign(
    campaign_id: int,
    session: Session = Depends(get_session)
):
    campaign = load_campaign(session, campaign_id)
    sender = session.get(SenderProfile, campaign.sender_profile_id) if campaign.sender_profile_id else None
    events = session.exec(
        select(Event)
        .join(CampaignEvent, CampaignEvent.event_id == Event.id)
        .where(CampaignEvent.campaign_id == campaign.id)
        .order_by(Event.start_date)
    ).all()
    recipients = session.exec(
        select(CampaignRecipient)
        .where(CampaignRecipient.campaign_id == campaign.id)
        .order_by(CampaignRecipient.created_at, CampaignRecipient.id)
    ).all()
    return CampaignDetail(
        **campaign.model_dump(),
        sender_profile=SenderProfileRead.model_validate(sender) if sender else None,
        events=[EventRead.model_validate(e) for e in events],
        recipients=recipient_details(session, recipients),
        recipient_counts=RecipientCounts(**count_recipients(session, campaign.id)),
    )


@router.patch("/{campaign_id}", response_model=CampaignRead)
def update_campaign(
    campaign_id: int,
    updates: CampaignUpdate,
    session: Session = Depends(get_session)
):
    """
    Edit a campaign. Content only in draft; pacing and status while
    ready, paused or sending; nothing while generating or completed.
    """
    campaign = load_campaign(session, campaign_id)
    return apply_campaign_update(session, campaign, updates)


@router.delete("/{campaign_id}")
def delete_campaign(
    campaign_id: int,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    campaign = load_campaign(session, campaign_id)
    remove_campaign(session, campaign)
    create_log(session, "delete_campaign", actor, f"campaign={campaign_id}")
    return {"success": True, "message": "Campaign deleted"}


# ==================== Generation ====================

@router.post("/{campaign_id}/generate")
def generate_campaign(
    campaign_id: int,
    body: GenerateRequest,
    session: Session = Depends(get_session),
    generator: EmailGenerator = Depends(get_email_generator),
):
    """
    Write emails for pending recipients.

    One batch by default; ``all`` keeps going until nothing is pending.
    ``background`` hands the run to a Celery worker.
    """
    campaign = load_campaign(session, campaign_id)
    content = ContentGenerator(session, generator)

    if body.background:
        content.load_context(campaign)
        if CAMPAIGN_GENERATING not in CAMPAIGN_TRANSITIONS.get(campaign.status, set()):
            raise InvalidTransitionException("campaign", campaign.status, CAMPAIGN_GENERATING)
        if count_with_status(session, campaign.id, RECIPIENT_PENDING) == 0:
            return {"success": True, "queued": False, "remaining": 0, "status": campaign.status}
        task = generate_campaign_content.delay(campaign.id, body.batch_size, body.all)
        return {"success": True, "queued": True, "task_id": task.id, "status": campaign.status}

    result = content.run(campaign, batch_size=body.batch_size, all_batches=body.all)
    return {"success": True, **result.to_dict()}


@router.post("/{campaign_id}/generate/cancel", response_model=CampaignRead)
def cancel_generation(
    campaign_id: int,
    session: Session = Depends(get_session)
):
    """Stop a running generation; the run notices before its next batch."""
    campaign = load_campaign(session, campaign_id)
    if campaign.status != CAMPAIGN_GENERATING:
        raise InvalidTransitionException(
            "campaign", campaign.status, campaign.status_before_generation or campaign.status,
            reason="Campaign is not generating",
        )
    return end_generation(session, campaign)


# ==================== Status ====================

@router.post("/{campaign_id}/ready", response_model=CampaignRead)
def mark_ready(
    campaign_id: int,
    session: Session = Depends(get_session)
):
    campaign = load_campaign(session, campaign_id)
    return transition_campaign(session, campaign, CAMPAIGN_READY)


@router.post("/{campaign_id}/start")
def start_campaign(
    campaign_id: int,
    body: Optional[StartRequest] = None,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """
    Move a ready or paused campaign to sending.

    Unless ``schedule`` is false the server-side driver is enqueued and
    keeps sending with the campaign's pacing until it completes or pauses.
    """
    body = body or StartRequest()
    campaign = load_campaign(session, campaign_id)
    was_sending = campaign.status == CAMPAIGN_SENDING
    if not was_sending and campaign.status not in (CAMPAIGN_READY, CAMPAIGN_PAUSED):
        raise InvalidTransitionException("campaign", campaign.status, CAMPAIGN_SENDING)

    if body.schedule and was_sending and get_send_driver(campaign.id):
        raise SendInProgressException(campaign.id)

    transition_campaign(session, campaign, CAMPAIGN_SENDING)
    driver_id = schedule_campaign_send(campaign.id) if body.schedule else None

    create_log(session, "start_campaign", actor, f"campaign={campaign.id} scheduled={body.schedule}")
    return {"success": True, "status": campaign.status, "driver_task_id": driver_id}


@router.post("/{campaign_id}/pause", response_model=CampaignRead)
def pause_campaign(
    campaign_id: int,
    session: Session = Depends(get_session)
):
    """Stop sending. A scheduled driver tick sees the status and exits."""
    campaign = load_campaign(session, campaign_id)
    return transition_campaign(session, campaign, CAMPAIGN_PAUSED)


# ==================== Sending ====================

@router.post("/{campaign_id}/send")
def send_next(
    campaign_id: int,
    session: Session = Depends(get_session),
    email_client: ResendClient = Depends(get_email_provider),
):
    """Send exactly one approved email, subject to window and daily cap."""
    return CampaignSendDispatcher(session, email_client).send_next(campaign_id)


@router.post("/{campaign_id}/test-send")
def test_send(
    campaign_id: int,
    body: TestSendRequest,
    session: Session = Depends(get_session),
    email_client: ResendClient = Depends(get_email_provider),
):
    dispatcher = CampaignSendDispatcher(session, email_client)
    return {"success": True, **dispatcher.send_test(campaign_id, body.recipientId, body.sendTo)}


# ==================== Review ====================

@router.patch("/{campaign_id}/approve")
def bulk_approve(
    campaign_id: int,
    body: RecipientBulkApprove,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """Approve or unapprove the listed recipients, or every one with ``all``."""
    campaign = load_campaign(session, campaign_id)
    if not body.all and not body.recipientIds:
        raise ValidationException("Provide recipientIds or all: true")
    ids = None if body.all else body.recipientIds
    updated = RecipientReview(session, campaign, actor).bulk_approve(ids, approved=body.approved)
    return {"success": True, "updated": updated, "approved": body.approved}


@router.post("/{campaign_id}/retry-failed")
def retry_failed(
    campaign_id: int,
    session: Session = Depends(get_session),
    actor: str = Depends(get_actor),
):
    """Put failed recipients back to pending so the next generation picks them up."""
    campaign = load_campaign(session, campaign_id)
    reset = RecipientReview(session, campaign, actor).retry_failed()
    return {"success": True, "reset": reset}
