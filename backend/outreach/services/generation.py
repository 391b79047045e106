"""
Batch content generation for a campaign's pending recipients.
"""
import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from outreach.core.config import settings
from outreach.core.exceptions import (
    InvalidTransitionException,
    LLMServiceException,
    MissingSenderProfileException,
    ServiceNotConfiguredException,
    ValidationException,
)
from outreach.models.campaign import Campaign, CAMPAIGN_GENERATING
from outreach.models.common import utcnow
from outreach.models.company import Company
from outreach.models.contact import Contact
from outreach.models.event import CampaignEvent, Event
from outreach.models.recipient import (
    CampaignRecipient,
    RECIPIENT_PENDING,
    RECIPIENT_GENERATED,
    RECIPIENT_FAILED,
    REGENERATABLE_STATUSES,
)
from outreach.models.sender_profile import SenderProfile
from outreach.services.email_format import body_to_html
from outreach.services.email_generator import EmailGenerator
from outreach.services.lifecycle import begin_generation, end_generation, count_with_status, count_recipients

logger = logging.getLogger(__name__)

# consecutive batches without a single success before a full run gives up
MAX_ZERO_PROGRESS_BATCHES = 2


@dataclass
class GenerationResult:
    generated: int = 0
    errors: int = 0
    remaining: int = 0
    total: int = 0
    status: str = ""
    stopped_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ContentGenerator:
    def __init__(self, session: Session, generator: EmailGenerator):
        self.session = session
        self.generator = generator

    def load_context(self, campaign: Campaign) -> Tuple[SenderProfile, List[Event]]:
        sender = self.session.get(SenderProfile, campaign.sender_profile_id) if campaign.sender_profile_id else None
        if not sender:
            raise MissingSenderProfileException(campaign.id)
        if not (campaign.purpose or "").strip():
            raise ValidationException("Campaign has no purpose", details={"campaign_id": campaign.id})
        if not self.generator.is_configured():
            raise ServiceNotConfiguredException("LLM API key not configured. Set LLM_API_KEY.")
        events = list(self.session.exec(
            select(Event)
            .join(CampaignEvent, CampaignEvent.event_id == Event.id)
            .where(CampaignEvent.campaign_id == campaign.id)
        ).all())
        return sender, events

    def _write(self, campaign: Campaign, recipient: CampaignRecipient, sender: SenderProfile, events: List[Event]):
        contact = self.session.get(Contact, recipient.contact_id)
        if contact is None:
            raise LLMServiceException("Contact not found")
        company = self.session.get(Company, recipient.company_id) if recipient.company_id else None
        email = self.generator.generate(campaign, sender, contact, company, events)

        recipient.subject = email.subject
        recipient.body = email.body
        recipient.body_html = body_to_html(email.body)
        recipient.status = RECIPIENT_GENERATED
        recipient.approved = False
        recipient.error = None
        recipient.generated_at = utcnow()
        recipient.updated_at = utcnow()
        self.session.add(recipient)

    def _generate_one(self, campaign, recipient, sender, events) -> bool:
        try:
            self._write(campaign, recipient, sender, events)
        except LLMServiceException as e:
            recipient.status = RECIPIENT_FAILED
            recipient.approved = False
            recipient.error = e.message
            recipient.updated_at = utcnow()
            self.session.add(recipient)
            self.session.commit()
            logger.warning(f"Generation failed for recipient {recipient.id}: {e.message}")
            return False
        self.session.commit()
        return True

    def run(self, campaign: Campaign, batch_size: Optional[int] = None, all_batches: bool = False) -> GenerationResult:
        """
        Generate pending recipients oldest first.

        One batch by default; with ``all_batches`` keep going until nothing is
        pending, the run is cancelled, or two batches in a row produce nothing.
        The campaign returns to the status it had before generation.
        """
        batch_size = batch_size or settings.GENERATION_BATCH_SIZE
        sender, events = self.load_context(campaign)
        result = GenerationResult()

        if count_with_status(self.session, campaign.id, RECIPIENT_PENDING) == 0:
            counts = count_recipients(self.session, campaign.id)
            result.total = counts["total"]
            result.status = campaign.status
            result.stopped_reason = "nothing_pending"
            return result

        begin_generation(self.session, campaign)
        zero_progress = 0
        try:
            while True:
                self.session.refresh(campaign)
                if campaign.status != CAMPAIGN_GENERATING:
                    result.stopped_reason = "cancelled"
                    break

                batch = self.session.exec(
                    select(CampaignRecipient)
                    .where(
                        CampaignRecipient.campaign_id == campaign.id,
                        CampaignRecipient.status == RECIPIENT_PENDING,
                    )
                    .order_by(CampaignRecipient.created_at, CampaignRecipient.id)
                    .limit(batch_size)
                ).all()
                if not batch:
                    break

                batch_generated = 0
                for recipient in batch:
                    if self._generate_one(campaign, recipient, sender, events):
                        batch_generated += 1
                    else:
                        result.errors += 1
                result.generated += batch_generated
                logger.info(f"Campaign {campaign.id} batch: {batch_generated}/{len(batch)} generated")

                if not all_batches:
                    break
                if batch_generated == 0:
                    zero_progress += 1
                    if zero_progress >= MAX_ZERO_PROGRESS_BATCHES:
                        result.stopped_reason = "no_progress"
                        logger.warning(f"Campaign {campaign.id} generation stopped after {zero_progress} empty batches")
                        break
                else:
                    zero_progress = 0
        finally:
            end_generation(self.session, campaign)

        counts = count_recipients(self.session, campaign.id)
        result.remaining = counts["pending"]
        result.total = counts["total"]
        result.status = campaign.status
        return result

    def regenerate(self, campaign: Campaign, recipient: CampaignRecipient) -> CampaignRecipient:
        """Rewrite one recipient in place; it always comes back as ``generated``."""
        if recipient.status not in REGENERATABLE_STATUSES:
            raise InvalidTransitionException(
                "recipient", recipient.status, RECIPIENT_GENERATED,
                reason=f"Recipient with status '{recipient.status}' cannot be regenerated",
            )
        sender, events = self.load_context(campaign)
        self._write(campaign, recipient, sender, events)
        self.session.commit()
        self.session.refresh(recipient)
        logger.info(f"Regenerated recipient {recipient.id}")
        return recipient
