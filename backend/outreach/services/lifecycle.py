"""
Campaign and recipient state machines.

Campaign:   draft -> generating -> ready -> sending <-> paused -> completed
Recipient:  pending -> generated -> approved -> queued -> sent
            (-> delivered -> opened -> clicked), with bounced, failed and
            suppressed as off-ramps.

Every rejected change raises a StateConflictException subclass and leaves
the rows untouched.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete
from sqlmodel import Session, select, func

from outreach.core.exceptions import (
    CampaignNotFoundException,
    RecipientNotFoundException,
    CampaignLockedException,
    DeleteNotAllowedException,
    InvalidTransitionException,
    ValidationException,
)
from outreach.core.security import create_log
from outreach.models.campaign import (
    Campaign,
    CampaignUpdate,
    CAMPAIGN_DRAFT,
    CAMPAIGN_GENERATING,
    CAMPAIGN_READY,
    CAMPAIGN_SENDING,
    CAMPAIGN_PAUSED,
    CAMPAIGN_COMPLETED,
    CAMPAIGN_STATUSES,
    PACING_FIELDS,
)
from outreach.models.common import utcnow
from outreach.models.contact import Contact, normalize_email
from outreach.models.event import CampaignEvent, Event
from outreach.models.recipient import (
    CampaignRecipient,
    RECIPIENT_PENDING,
    RECIPIENT_GENERATED,
    RECIPIENT_APPROVED,
    RECIPIENT_QUEUED,
    RECIPIENT_FAILED,
    RECIPIENT_SUPPRESSED,
    SENT_STATUSES,
    DELETABLE_STATUSES,
    EDITABLE_STATUSES,
)
from outreach.models.sender_profile import SenderProfile
from outreach.services.email_format import body_to_html
from outreach.services.suppression import SuppressionPolicy, suppress_recipient

logger = logging.getLogger(__name__)

CAMPAIGN_TRANSITIONS = {
    CAMPAIGN_DRAFT: {CAMPAIGN_GENERATING, CAMPAIGN_READY},
    # leaving generating always restores the status it was entered from
    CAMPAIGN_GENERATING: {CAMPAIGN_DRAFT, CAMPAIGN_READY, CAMPAIGN_PAUSED},
    CAMPAIGN_READY: {CAMPAIGN_GENERATING, CAMPAIGN_SENDING},
    CAMPAIGN_SENDING: {CAMPAIGN_PAUSED, CAMPAIGN_COMPLETED},
    CAMPAIGN_PAUSED: {CAMPAIGN_GENERATING, CAMPAIGN_SENDING, CAMPAIGN_COMPLETED},
    CAMPAIGN_COMPLETED: set(),
}

# targets that need at least one approved recipient
REQUIRES_APPROVED = {CAMPAIGN_READY, CAMPAIGN_SENDING}

LOCKED_STATUSES = {CAMPAIGN_GENERATING, CAMPAIGN_COMPLETED}


def pacing_only(status: str) -> bool:
    return status in (CAMPAIGN_READY, CAMPAIGN_PAUSED, CAMPAIGN_SENDING)


def count_recipients(session: Session, campaign_id: int) -> Dict[str, int]:
    rows = session.exec(
        select(CampaignRecipient.status, func.count(CampaignRecipient.id))
        .where(CampaignRecipient.campaign_id == campaign_id)
        .group_by(CampaignRecipient.status)
    ).all()
    by_status = {status: count for status, count in rows}
    return {
        "total": sum(by_status.values()),
        "pending": by_status.get(RECIPIENT_PENDING, 0),
        "generated": by_status.get(RECIPIENT_GENERATED, 0),
        "approved": by_status.get(RECIPIENT_APPROVED, 0),
        "sent": sum(by_status.get(s, 0) for s in SENT_STATUSES),
        "failed": by_status.get(RECIPIENT_FAILED, 0),
        "suppressed": by_status.get(RECIPIENT_SUPPRESSED, 0),
    }


def count_with_status(session: Session, campaign_id: int, status: str) -> int:
    return session.exec(
        select(func.count(CampaignRecipient.id)).where(
            CampaignRecipient.campaign_id == campaign_id,
            CampaignRecipient.status == status,
        )
    ).one()


# ==================== Campaign ====================

def load_campaign(session: Session, campaign_id: int) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if not campaign:
        raise CampaignNotFoundException(campaign_id)
    return campaign


def load_recipient(session: Session, campaign: Campaign, recipient_id: int) -> CampaignRecipient:
    recipient = session.get(CampaignRecipient, recipient_id)
    if not recipient or recipient.campaign_id != campaign.id:
        raise RecipientNotFoundException(recipient_id)
    return recipient


def transition_campaign(session: Session, campaign: Campaign, target: str, commit: bool = True) -> Campaign:
    current = campaign.status
    if target not in CAMPAIGN_STATUSES:
        raise ValidationException(f"Unknown campaign status '{target}'", details={"status": target})
    if current == target:
        return campaign
    if target not in CAMPAIGN_TRANSITIONS.get(current, set()):
        raise InvalidTransitionException("campaign", current, target)

    if target in REQUIRES_APPROVED and count_with_status(session, campaign.id, RECIPIENT_APPROVED) == 0:
        raise InvalidTransitionException(
            "campaign", current, target,
            reason="At least one approved recipient is required",
        )
    if target == CAMPAIGN_SENDING and not campaign.sender_profile_id:
        raise InvalidTransitionException(
            "campaign", current, target,
            reason="Campaign has no sender profile configured",
        )

    campaign.status = target
    campaign.updated_at = utcnow()
    session.add(campaign)
    if commit:
        session.commit()
        session.refresh(campaign)
    logger.info(f"Campaign {campaign.id} transition {current} -> {target}")
    return campaign


def begin_generation(session: Session, campaign: Campaign) -> Campaign:
    """Enter ``generating`` remembering where to return afterwards."""
    if campaign.status == CAMPAIGN_GENERATING:
        return campaign
    if CAMPAIGN_GENERATING not in CAMPAIGN_TRANSITIONS.get(campaign.status, set()):
        raise InvalidTransitionException("campaign", campaign.status, CAMPAIGN_GENERATING)
    if count_with_status(session, campaign.id, RECIPIENT_PENDING) == 0:
        raise InvalidTransitionException(
            "campaign", campaign.status, CAMPAIGN_GENERATING,
            reason="No pending recipients to generate",
        )
    campaign.status_before_generation = campaign.status
    return transition_campaign(session, campaign, CAMPAIGN_GENERATING)


def end_generation(session: Session, campaign: Campaign) -> Campaign:
    """Leave ``generating``; a no-op when the run was already cancelled."""
    session.refresh(campaign)
    if campaign.status != CAMPAIGN_GENERATING:
        return campaign
    previous = campaign.status_before_generation or CAMPAIGN_DRAFT
    campaign.status = previous
    campaign.status_before_generation = None
    campaign.updated_at = utcnow()
    session.add(campaign)
    session.commit()
    session.refresh(campaign)
    logger.info(f"Campaign {campaign.id} transition generating -> {previous}")
    return campaign


def set_campaign_events(session: Session, campaign: Campaign, event_ids: Iterable[int]) -> None:
    event_ids = list(dict.fromkeys(event_ids))
    if event_ids:
        found = session.exec(select(Event.id).where(Event.id.in_(event_ids))).all()
        missing = sorted(set(event_ids) - set(found))
        if missing:
            raise ValidationException("Unknown event ids", details={"event_ids": missing})
    session.exec(delete(CampaignEvent).where(CampaignEvent.campaign_id == campaign.id))
    for event_id in event_ids:
        session.add(CampaignEvent(campaign_id=campaign.id, event_id=event_id))


def update_campaign(session: Session, campaign: Campaign, updates: CampaignUpdate) -> Campaign:
    """
    Apply a PATCH.

    Content may only change in ``draft``; ``ready``, ``paused`` and
    ``sending`` accept pacing fields and a status change; ``generating``
    and ``completed`` accept nothing.
    """
    data = updates.model_dump(exclude_unset=True)
    target_status = data.pop("status", None)
    event_ids = data.pop("event_ids", None)

    if campaign.status in LOCKED_STATUSES:
        raise CampaignLockedException(campaign.status)

    if pacing_only(campaign.status):
        blocked = sorted(k for k in data if k not in PACING_FIELDS)
        if event_ids is not None:
            blocked.append("event_ids")
        if blocked:
            raise CampaignLockedException(campaign.status, fields=blocked)

    for field in ("name", "purpose"):
        if field in data and not (data[field] or "").strip():
            raise ValidationException(f"{field} cannot be empty")

    start = data.get("send_window_start", campaign.send_window_start)
    end = data.get("send_window_end", campaign.send_window_end)
    min_delay = data.get("min_delay_seconds", campaign.min_delay_seconds)
    max_delay = data.get("max_delay_seconds", campaign.max_delay_seconds)
    if start is None or end is None or start >= end:
        raise ValidationException("send_window_start must be before send_window_end")
    if min_delay is None or max_delay is None or min_delay > max_delay:
        raise ValidationException("min_delay_seconds must not exceed max_delay_seconds")

    if data.get("sender_profile_id") is not None and not session.get(SenderProfile, data["sender_profile_id"]):
        raise ValidationException("Sender profile not found", details={"sender_profile_id": data["sender_profile_id"]})

    for key, value in data.items():
        if key in PACING_FIELDS and value is None:
            continue
        setattr(campaign, key, value)
    if event_ids is not None:
        set_campaign_events(session, campaign, event_ids)

    campaign.updated_at = utcnow()
    session.add(campaign)

    if target_status and target_status != campaign.status:
        if target_status == CAMPAIGN_GENERATING:
            raise InvalidTransitionException(
                "campaign", campaign.status, target_status,
                reason="Use the generate endpoint to start generation",
            )
        transition_campaign(session, campaign, target_status, commit=False)

    session.commit()
    session.refresh(campaign)
    return campaign


def delete_campaign(session: Session, campaign: Campaign) -> None:
    """Remove a campaign with its recipients and event links. Not while it is working."""
    if campaign.status in (CAMPAIGN_GENERATING, CAMPAIGN_SENDING):
        raise InvalidTransitionException(
            "campaign", campaign.status, "deleted",
            reason=f"Campaign cannot be deleted while '{campaign.status}', pause it first",
        )
    session.exec(delete(CampaignRecipient).where(CampaignRecipient.campaign_id == campaign.id))
    session.exec(delete(CampaignEvent).where(CampaignEvent.campaign_id == campaign.id))
    session.delete(campaign)
    session.commit()
    logger.info(f"Deleted campaign {campaign.id}")


# ==================== Recipients ====================

class RecipientReview:
    """Operator actions on recipients of one campaign."""

    def __init__(self, session: Session, campaign: Campaign, actor: str = "system"):
        self.session = session
        self.campaign = campaign
        self.actor = actor
        self.policy = SuppressionPolicy(session)

    def _touch(self, recipient: CampaignRecipient):
        recipient.updated_at = utcnow()
        self.session.add(recipient)

    def _approve(self, recipient: CampaignRecipient) -> bool:
        """generated -> approved, or suppressed when policy says so. True if approved."""
        reason = self.policy.check(recipient)
        if reason:
            suppress_recipient(recipient, reason)
            self.session.add(recipient)
            logger.info(f"Suppress recipient {recipient.id} on approve: {reason}")
            return False
        recipient.status = RECIPIENT_APPROVED
        recipient.approved = True
        self._touch(recipient)
        return True

    def approve(self, recipient: CampaignRecipient) -> CampaignRecipient:
        if recipient.status in (RECIPIENT_APPROVED, RECIPIENT_QUEUED):
            return recipient
        if recipient.status != RECIPIENT_GENERATED:
            raise InvalidTransitionException(
                "recipient", recipient.status, RECIPIENT_APPROVED,
                reason=f"Only generated recipients can be approved (status is '{recipient.status}')",
            )
        self._approve(recipient)
        self.session.commit()
        self.session.refresh(recipient)
        logger.info(f"Approve recipient {recipient.id} -> {recipient.status}")
        return recipient

    def unapprove(self, recipient: CampaignRecipient) -> CampaignRecipient:
        if recipient.status == RECIPIENT_GENERATED:
            return recipient
        if recipient.status != RECIPIENT_APPROVED:
            raise InvalidTransitionException("recipient", recipient.status, RECIPIENT_GENERATED)
        recipient.status = RECIPIENT_GENERATED
        recipient.approved = False
        self._touch(recipient)
        self.session.commit()
        self.session.refresh(recipient)
        logger.info(f"Unapprove recipient {recipient.id}")
        return recipient

    def edit(self, recipient: CampaignRecipient, subject: Optional[str] = None, body: Optional[str] = None) -> CampaignRecipient:
        if recipient.status not in EDITABLE_STATUSES:
            raise InvalidTransitionException(
                "recipient", recipient.status, recipient.status,
                reason=f"Recipient with status '{recipient.status}' cannot be edited",
            )
        if subject is not None:
            recipient.subject = subject.strip()
        if body is not None:
            recipient.body = body
            recipient.body_html = body_to_html(body)
        self._touch(recipient)
        self.session.commit()
        self.session.refresh(recipient)
        return recipient

    def suppress(self, recipient: CampaignRecipient, reason: Optional[str]) -> CampaignRecipient:
        if recipient.status in SENT_STATUSES:
            raise InvalidTransitionException("recipient", recipient.status, RECIPIENT_SUPPRESSED)
        suppress_recipient(recipient, reason or "Suppressed by operator")
        self.session.add(recipient)
        create_log(
            self.session, "suppress_recipient", self.actor,
            f"campaign={self.campaign.id} recipient={recipient.id} reason={recipient.suppression_reason}",
            commit=False,
        )
        self.session.commit()
        self.session.refresh(recipient)
        return recipient

    def unsuppress(self, recipient: CampaignRecipient) -> CampaignRecipient:
        if recipient.status != RECIPIENT_SUPPRESSED:
            raise InvalidTransitionException("recipient", recipient.status, RECIPIENT_APPROVED)
        previous_reason = recipient.suppression_reason
        if recipient.body:
            recipient.status = RECIPIENT_APPROVED
            recipient.approved = True
        else:
            recipient.status = RECIPIENT_PENDING
            recipient.approved = False
        recipient.suppression_reason = None
        self._touch(recipient)
        create_log(
            self.session, "unsuppress_recipient", self.actor,
            f"campaign={self.campaign.id} recipient={recipient.id} was={previous_reason}",
            commit=False,
        )
        self.session.commit()
        self.session.refresh(recipient)
        logger.info(f"Unsuppress recipient {recipient.id} -> {recipient.status}")
        return recipient

    def delete(self, recipient: CampaignRecipient) -> None:
        if recipient.status not in DELETABLE_STATUSES:
            raise DeleteNotAllowedException(recipient.id, recipient.status)
        self.session.delete(recipient)
        self.session.commit()
        logger.info(f"Delete recipient {recipient.id} from campaign {self.campaign.id}")

    def _select(self, recipient_ids: Optional[List[int]], status: Optional[str] = None) -> List[CampaignRecipient]:
        query = select(CampaignRecipient).where(CampaignRecipient.campaign_id == self.campaign.id)
        if recipient_ids is not None:
            query = query.where(CampaignRecipient.id.in_(recipient_ids))
        if status is not None:
            query = query.where(CampaignRecipient.status == status)
        return list(self.session.exec(query.order_by(CampaignRecipient.created_at, CampaignRecipient.id)).all())

    def bulk_approve(self, recipient_ids: Optional[List[int]], approved: bool = True) -> int:
        """
        Approve (or unapprove) the given recipients, or every remaining one
        when ``recipient_ids`` is None. Returns how many changed state.
        """
        updated = 0
        if approved:
            for recipient in self._select(recipient_ids, RECIPIENT_GENERATED):
                if self._approve(recipient):
                    updated += 1
        else:
            for recipient in self._select(recipient_ids, RECIPIENT_APPROVED):
                recipient.status = RECIPIENT_GENERATED
                recipient.approved = False
                self._touch(recipient)
                updated += 1
        self.session.commit()
        logger.info(f"Bulk {'approve' if approved else 'unapprove'} on campaign {self.campaign.id}: {updated} updated")
        return updated

    def bulk_delete(self, recipient_ids: List[int]) -> Tuple[int, int]:
        deleted = 0
        skipped = 0
        for recipient in self._select(recipient_ids):
            if recipient.status in DELETABLE_STATUSES:
                self.session.delete(recipient)
                deleted += 1
            else:
                skipped += 1
        skipped += len(set(recipient_ids)) - deleted - skipped
        self.session.commit()
        logger.info(f"Bulk delete on campaign {self.campaign.id}: {deleted} deleted, {skipped} skipped")
        return deleted, skipped

    def retry_failed(self) -> int:
        failed = self._select(None, RECIPIENT_FAILED)
        for recipient in failed:
            recipient.status = RECIPIENT_PENDING
            recipient.approved = False
            recipient.error = None
            self._touch(recipient)
        self.session.commit()
        logger.info(f"Retry failed on campaign {self.campaign.id}: {len(failed)} reset to pending")
        return len(failed)

    def add(self, contact_ids: List[int]) -> Tuple[int, int, List[Dict]]:
        """
        Attach contacts as pending recipients.

        Contacts that are missing, have no email address, or are already in
        the campaign are skipped. With ``one_per_company`` a contact is also
        skipped when the campaign already holds someone from its company.
        Returns ``(added, skipped, cooldown_warnings)``; the warnings name
        added contacts whose company another campaign emailed recently.
        """
        if self.campaign.status == CAMPAIGN_COMPLETED:
            raise CampaignLockedException(self.campaign.status)

        wanted = list(dict.fromkeys(contact_ids))
        existing = set(self.session.exec(
            select(CampaignRecipient.contact_id).where(
                CampaignRecipient.campaign_id == self.campaign.id,
                CampaignRecipient.contact_id.in_(wanted),
            )
        ).all())
        contacts = {
            c.id: c for c in self.session.exec(select(Contact).where(Contact.id.in_(wanted))).all()
        }
        taken_companies = set()
        if self.campaign.one_per_company:
            taken_companies = set(self.session.exec(
                select(CampaignRecipient.company_id).where(
                    CampaignRecipient.campaign_id == self.campaign.id,
                    CampaignRecipient.company_id.is_not(None),
                )
            ).all())

        new_contacts = []
        for contact_id in wanted:
            contact = contacts.get(contact_id)
            if contact is None or contact_id in existing or not normalize_email(contact.email):
                continue
            if contact.company_id in taken_companies:
                logger.info(f"Skip contact {contact_id}: campaign {self.campaign.id} already has company {contact.company_id}")
                continue
            if self.campaign.one_per_company and contact.company_id:
                taken_companies.add(contact.company_id)
            self.session.add(CampaignRecipient(
                campaign_id=self.campaign.id,
                contact_id=contact.id,
                company_id=contact.company_id,
            ))
            new_contacts.append(contact)

        warnings = self.policy.cooldown_warnings(self.campaign, new_contacts)
        self.session.commit()
        added = len(new_contacts)
        skipped = len(contact_ids) - added
        logger.info(
            f"Add recipients to campaign {self.campaign.id}: {added} added, {skipped} skipped, "
            f"{len(warnings)} cooldown warnings"
        )
        return added, skipped, warnings
