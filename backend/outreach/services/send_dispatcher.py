"""
Paced sending.

``send_next`` mails exactly one approved recipient of a campaign, honoring
the send window and the daily cap in ``settings.SEND_TIMEZONE``. The
recipient is claimed with a conditional UPDATE (approved -> queued) that
also re-checks the daily cap, so two callers can never send the same row
or overshoot the cap.

A queued row untouched for longer than ``settings.SEND_LOCK_TIMEOUT`` is a
claim whose sender died; it stops counting as in flight and goes back to
approved on the next call.
"""
import random
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import update, and_, or_
from sqlalchemy.orm import aliased
from sqlmodel import Session, select, func

from outreach.core.config import settings
from outreach.core.exceptions import (
    CampaignNotFoundException,
    EmailProviderException,
    InvalidTransitionException,
    MissingSenderProfileException,
    RecipientNotFoundException,
    ServiceNotConfiguredException,
    ValidationException,
)
from outreach.models.campaign import Campaign, CAMPAIGN_READY, CAMPAIGN_SENDING, CAMPAIGN_COMPLETED
from outreach.models.common import utcnow
from outreach.models.contact import Contact, normalize_email, OUTREACH_NOT_CONTACTED, OUTREACH_CONTACTED
from outreach.models.recipient import (
    CampaignRecipient,
    RECIPIENT_APPROVED,
    RECIPIENT_QUEUED,
    RECIPIENT_SENT,
    RECIPIENT_FAILED,
)
from outreach.models.sender_profile import SenderProfile
from outreach.services.email_format import render_email_html
from outreach.services.email_generator import DEFAULT_SUBJECT
from outreach.services.email_provider import ResendClient
from outreach.services.lifecycle import count_with_status
from outreach.services.suppression import SuppressionPolicy, suppress_recipient

logger = logging.getLogger(__name__)

SKIP_OUTSIDE_WINDOW = "outside_send_window"
SKIP_DAILY_LIMIT = "daily_limit_reached"
SKIP_NO_EMAIL = "no_email_address"
SKIP_SUPPRESSED = "suppressed"
SKIP_IN_FLIGHT = "send_in_flight"

# pause before retrying when another sender holds a queued row
IN_FLIGHT_RETRY_SECONDS = 30

# how many approved rows to try when the first claim loses a race
CLAIM_CANDIDATES = 5

SENDABLE_CAMPAIGN_STATUSES = (CAMPAIGN_READY, CAMPAIGN_SENDING)


def _utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _seconds_between(start: datetime, end: datetime) -> int:
    delta = end.astimezone(timezone.utc) - start.astimezone(timezone.utc)
    return max(int(delta.total_seconds()), 1)


def _stale_claim_cutoff() -> datetime:
    # wall clock, like the Redis send lock it mirrors
    return utcnow() - timedelta(seconds=settings.SEND_LOCK_TIMEOUT)


class CampaignSendDispatcher:

    def __init__(
        self,
        session: Session,
        email_client: ResendClient,
        tz: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.email_client = email_client
        self.tz = ZoneInfo(tz or settings.SEND_TIMEZONE)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ---------- time helpers ----------

    def local_now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    def in_window(self, campaign: Campaign, now_local: datetime) -> bool:
        return campaign.send_window_start <= now_local.hour < campaign.send_window_end

    def seconds_until_window(self, campaign: Campaign, now_local: datetime) -> int:
        opens_today = now_local.replace(hour=campaign.send_window_start, minute=0, second=0, microsecond=0)
        if now_local < opens_today:
            return _seconds_between(now_local, opens_today)
        return self.seconds_until_next_day_window(campaign, now_local)

    def seconds_until_next_day_window(self, campaign: Campaign, now_local: datetime) -> int:
        tomorrow = (now_local + timedelta(days=1)).replace(
            hour=campaign.send_window_start, minute=0, second=0, microsecond=0
        )
        return _seconds_between(now_local, tomorrow)

    def day_bounds(self, now_local: datetime) -> Tuple[datetime, datetime]:
        """Start and end of the local calendar day as naive UTC."""
        day_start = now_local.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = (day_start + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return _utc_naive(day_start), _utc_naive(day_end)

    # ---------- counters ----------

    def _today_clause(self, model, campaign_id: int, now_local: datetime):
        start, end = self.day_bounds(now_local)
        return and_(
            model.campaign_id == campaign_id,
            or_(
                and_(model.status == RECIPIENT_QUEUED, model.updated_at >= _stale_claim_cutoff()),
                and_(model.sent_at.is_not(None), model.sent_at >= start, model.sent_at < end),
            ),
        )

    def sent_today(self, campaign: Campaign, now_local: Optional[datetime] = None) -> int:
        """Recipients sent during the current local day plus those in flight."""
        now_local = now_local or self.local_now()
        return self.session.exec(
            select(func.count(CampaignRecipient.id)).where(
                self._today_clause(CampaignRecipient, campaign.id, now_local)
            )
        ).one()

    # ---------- claim ----------

    def release_stale_claims(self, campaign: Campaign) -> int:
        """Put queued rows whose sender went away back to approved."""
        stmt = (
            update(CampaignRecipient)
            .where(
                CampaignRecipient.campaign_id == campaign.id,
                CampaignRecipient.status == RECIPIENT_QUEUED,
                CampaignRecipient.updated_at < _stale_claim_cutoff(),
            )
            .values(status=RECIPIENT_APPROVED, approved=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        released = self.session.exec(stmt).rowcount
        self.session.commit()
        if released:
            logger.warning(f"Campaign {campaign.id}: released {released} stale queued recipient(s) back to approved")
        return released

    def _fail_claim(self, recipient_id: int, exc: Exception) -> None:
        """Mark a claimed row failed after an unexpected error so it never stays queued."""
        self.session.rollback()
        recipient = self.session.get(CampaignRecipient, recipient_id)
        if recipient is None or recipient.status != RECIPIENT_QUEUED:
            return
        recipient.status = RECIPIENT_FAILED
        recipient.approved = False
        recipient.error = f"Send interrupted: {type(exc).__name__}: {exc}"
        recipient.updated_at = utcnow()
        self.session.add(recipient)
        self.session.commit()
        logger.error(f"Recipient {recipient_id} marked failed after unexpected error: {exc!r}")

    def _claim(self, campaign: Campaign, now_local: datetime) -> Optional[int]:
        """Flip the oldest approved recipient to queued. Returns its id, or None if every try lost."""
        candidates = self.session.exec(
            select(CampaignRecipient.id)
            .where(
                CampaignRecipient.campaign_id == campaign.id,
                CampaignRecipient.status == RECIPIENT_APPROVED,
            )
            .order_by(CampaignRecipient.created_at, CampaignRecipient.id)
            .limit(CLAIM_CANDIDATES)
        ).all()

        counted = aliased(CampaignRecipient)
        used_today = (
            select(func.count(counted.id))
            .where(self._today_clause(counted, campaign.id, now_local))
            .correlate(None)
            .scalar_subquery()
        )
        for recipient_id in candidates:
            stmt = (
                update(CampaignRecipient)
                .where(
                    CampaignRecipient.id == recipient_id,
                    CampaignRecipient.status == RECIPIENT_APPROVED,
                    used_today < campaign.daily_send_limit,
                )
                .values(status=RECIPIENT_QUEUED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = self.session.exec(stmt)
            self.session.commit()
            if result.rowcount == 1:
                return recipient_id
        return None

    def _skip(self, reason: str, retry_after: Optional[int] = None, **extra) -> Dict:
        body = {"skipped": True, "reason": reason}
        if retry_after is not None:
            body["retry_after_seconds"] = retry_after
        body.update(extra)
        return body

    # ---------- public ----------

    def _load_sendable(self, campaign_id: int) -> Tuple[Campaign, SenderProfile]:
        campaign = self.session.get(Campaign, campaign_id)
        if not campaign:
            raise CampaignNotFoundException(campaign_id)
        if campaign.status not in SENDABLE_CAMPAIGN_STATUSES:
            raise InvalidTransitionException(
                "campaign", campaign.status, CAMPAIGN_SENDING,
                reason=f"Campaign is '{campaign.status}', it must be ready or sending",
            )
        sender = self.session.get(SenderProfile, campaign.sender_profile_id) if campaign.sender_profile_id else None
        if not sender:
            raise MissingSenderProfileException(campaign.id)
        return campaign, sender

    def send_next(self, campaign_id: int) -> Dict:
        """
        Send the next approved recipient.

        Returns one of:
        - ``{"completed": True}`` when nothing approved is left
        - ``{"skipped": True, "reason": ..., "retry_after_seconds": ...}``; nothing changed
          unless the reason is suppression or a missing address
        - ``{"sent": True, ..., "recommended_delay_seconds": n}``

        Provider failures mark the recipient failed and raise EmailProviderException;
        any other error after the claim also leaves the recipient failed, then propagates.
        """
        campaign, sender = self._load_sendable(campaign_id)
        if not self.email_client.is_configured():
            raise ServiceNotConfiguredException("Resend API key not configured. Set RESEND_API_KEY.")

        now_local = self.local_now()
        if not self.in_window(campaign, now_local):
            retry_after = self.seconds_until_window(campaign, now_local)
            logger.info(f"Campaign {campaign.id} outside send window at hour {now_local.hour}, retry in {retry_after}s")
            return self._skip(SKIP_OUTSIDE_WINDOW, retry_after, current_hour=now_local.hour)

        self.release_stale_claims(campaign)
        used = self.sent_today(campaign, now_local)
        if used >= campaign.daily_send_limit:
            retry_after = self.seconds_until_next_day_window(campaign, now_local)
            logger.info(f"Campaign {campaign.id} daily limit {campaign.daily_send_limit} reached")
            return self._skip(SKIP_DAILY_LIMIT, retry_after, sent_today=used, daily_send_limit=campaign.daily_send_limit)

        if count_with_status(self.session, campaign.id, RECIPIENT_APPROVED) == 0:
            if count_with_status(self.session, campaign.id, RECIPIENT_QUEUED) > 0:
                return self._skip(SKIP_IN_FLIGHT, IN_FLIGHT_RETRY_SECONDS)
            if campaign.status == CAMPAIGN_SENDING:
                campaign.status = CAMPAIGN_COMPLETED
                campaign.updated_at = utcnow()
                self.session.add(campaign)
                self.session.commit()
                logger.info(f"Campaign {campaign.id} completed, no approved recipients left")
            return {"completed": True}

        recipient_id = self._claim(campaign, now_local)
        if recipient_id is None:
            # lost every race, or the cap filled up between the check and the claim
            used = self.sent_today(campaign, now_local)
            if used >= campaign.daily_send_limit:
                return self._skip(
                    SKIP_DAILY_LIMIT, self.seconds_until_next_day_window(campaign, now_local),
                    sent_today=used, daily_send_limit=campaign.daily_send_limit,
                )
            return self._skip(SKIP_IN_FLIGHT, IN_FLIGHT_RETRY_SECONDS)

        recipient = self.session.get(CampaignRecipient, recipient_id)
        try:
            return self._deliver(campaign, sender, recipient, now_local)
        except EmailProviderException:
            raise
        except Exception as e:
            self._fail_claim(recipient_id, e)
            raise

    def _deliver(self, campaign: Campaign, sender: SenderProfile, recipient: CampaignRecipient, now_local: datetime) -> Dict:
        reason = SuppressionPolicy(self.session).check(recipient)
        if reason:
            suppress_recipient(recipient, reason)
            self.session.add(recipient)
            self.session.commit()
            logger.info(f"Suppress recipient {recipient.id} at send time: {reason}")
            return self._skip(SKIP_SUPPRESSED, 0, suppressed=True, recipient_id=recipient.id, suppression_reason=reason)

        contact = self.session.get(Contact, recipient.contact_id)
        to_address = normalize_email(contact.email) if contact else None
        if not to_address:
            recipient.status = RECIPIENT_FAILED
            recipient.approved = False
            recipient.error = "No email address"
            recipient.updated_at = utcnow()
            self.session.add(recipient)
            self.session.commit()
            return self._skip(SKIP_NO_EMAIL, 0, recipient_id=recipient.id)

        subject = recipient.subject or DEFAULT_SUBJECT
        try:
            sent = self.email_client.send_email(
                from_=sender.from_header,
                to=to_address,
                subject=subject,
                html=render_email_html(recipient.body_html, recipient.body, sender.signature),
                reply_to=campaign.reply_to or sender.email,
            )
        except EmailProviderException as e:
            recipient.status = RECIPIENT_FAILED
            recipient.approved = False
            recipient.error = e.message
            recipient.updated_at = utcnow()
            self.session.add(recipient)
            self.session.commit()
            logger.error(f"Send to recipient {recipient.id} failed: {e.message}")
            raise

        now = _utc_naive(self.clock())
        recipient.status = RECIPIENT_SENT
        recipient.approved = False
        recipient.error = None
        recipient.sent_at = now
        recipient.provider_message_id = sent.id
        recipient.updated_at = now
        self.session.add(recipient)

        if contact.outreach_status == OUTREACH_NOT_CONTACTED:
            contact.outreach_status = OUTREACH_CONTACTED
            self.session.add(contact)

        if campaign.status == CAMPAIGN_READY:
            campaign.status = CAMPAIGN_SENDING
            campaign.updated_at = now
            self.session.add(campaign)

        self.session.commit()
        delay = random.randint(campaign.min_delay_seconds, campaign.max_delay_seconds)
        logger.info(f"Sent campaign {campaign.id} recipient {recipient.id} to {to_address}, next in {delay}s")

        return {
            "sent": True,
            "recipient_id": recipient.id,
            "contact_name": contact.full_name,
            "contact_email": to_address,
            "subject": subject,
            "provider_message_id": sent.id,
            "recommended_delay_seconds": delay,
            "sent_today": self.sent_today(campaign, now_local),
            "daily_send_limit": campaign.daily_send_limit,
        }

    def send_test(self, campaign_id: int, recipient_id: int, send_to: str) -> Dict:
        """Mail a recipient's content to ``send_to``. Touches no recipient or counter."""
        campaign = self.session.get(Campaign, campaign_id)
        if not campaign:
            raise CampaignNotFoundException(campaign_id)
        sender = self.session.get(SenderProfile, campaign.sender_profile_id) if campaign.sender_profile_id else None
        if not sender:
            raise MissingSenderProfileException(campaign.id)
        recipient = self.session.get(CampaignRecipient, recipient_id)
        if not recipient or recipient.campaign_id != campaign.id:
            raise RecipientNotFoundException(recipient_id)
        if not recipient.body:
            raise ValidationException("Recipient has no generated content", details={"recipient_id": recipient_id})
        to_address = normalize_email(send_to)
        if not to_address or "@" not in to_address:
            raise ValidationException("sendTo must be an email address")

        subject = f"[TEST] {recipient.subject or DEFAULT_SUBJECT}"
        sent = self.email_client.send_email(
            from_=sender.from_header,
            to=to_address,
            subject=subject,
            html=render_email_html(recipient.body_html, recipient.body, sender.signature),
            reply_to=campaign.reply_to or sender.email,
        )
        logger.info(f"Test-send campaign {campaign.id} recipient {recipient.id} to {to_address}")
        return {"sent": True, "to": to_address, "subject": subject, "provider_message_id": sent.id}
