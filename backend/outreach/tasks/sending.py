"""
Server-side send driver.

One task invocation sends (at most) one email, then schedules the next
tick with the delay the dispatcher recommends, so pacing survives the
operator closing the dashboard. Only the tick whose id is registered as
the campaign's driver may run; a Redis lock keeps ticks from overlapping.
"""
import uuid
from typing import Dict, Optional

from sqlmodel import Session

from outreach.core.celery_app import celery_app
from outreach.core.concurrency import (
    clear_send_driver,
    get_campaign_send_lock,
    get_send_driver,
    set_send_driver,
)
from outreach.core.db import engine
from outreach.core.exceptions import OutreachException
from outreach.core.logging import get_task_logger
from outreach.core.security import create_log
from outreach.models.campaign import Campaign, CAMPAIGN_SENDING, CAMPAIGN_PAUSED
from outreach.services.email_provider import get_email_client
from outreach.services.lifecycle import transition_campaign
from outreach.services.send_dispatcher import CampaignSendDispatcher

# re-check interval while another tick holds the lock
LOCKED_RETRY_SECONDS = 15


def schedule_campaign_send(campaign_id: int, countdown: int = 0) -> str:
    """Register a new driver tick for the campaign and enqueue it."""
    task_id = uuid.uuid4().hex
    set_send_driver(campaign_id, task_id)
    drive_campaign_send.apply_async((campaign_id,), countdown=countdown, task_id=task_id)
    return task_id


def next_countdown(result: Dict) -> Optional[int]:
    """Seconds until the next tick, or None when the driver should stop."""
    if result.get("completed"):
        return None
    if result.get("sent"):
        return int(result.get("recommended_delay_seconds") or 0)
    if result.get("skipped"):
        return int(result.get("retry_after_seconds") or 0)
    return None


def _pause_on_error(session: Session, campaign_id: int, message: str, log) -> None:
    campaign = session.get(Campaign, campaign_id)
    if campaign and campaign.status == CAMPAIGN_SENDING:
        transition_campaign(session, campaign, CAMPAIGN_PAUSED)
        create_log(session, "send_driver_paused", "system", f"campaign={campaign_id} error={message}", status="failed")
        log.warning(f"Campaign {campaign_id} paused after send error: {message}")


@celery_app.task(bind=True, max_retries=3)
def drive_campaign_send(self, campaign_id: int):
    log = get_task_logger("drive_campaign_send", self.request.id, campaign_id)

    if get_send_driver(campaign_id) != self.request.id:
        log.info(f"Campaign {campaign_id}: superseded driver tick exits")
        return {"stopped": "superseded"}

    lock = get_campaign_send_lock(campaign_id)
    with lock.hold() as acquired:
        if not acquired:
            schedule_campaign_send(campaign_id, countdown=LOCKED_RETRY_SECONDS)
            return {"stopped": "locked"}

        with Session(engine) as session:
            campaign = session.get(Campaign, campaign_id)
            if not campaign or campaign.status != CAMPAIGN_SENDING:
                status = campaign.status if campaign else "missing"
                log.info(f"Campaign {campaign_id} is {status}, driver stops")
                clear_send_driver(campaign_id)
                return {"stopped": status}

            dispatcher = CampaignSendDispatcher(session, get_email_client())
            try:
                result = dispatcher.send_next(campaign_id)
            except OutreachException as e:
                log.error(f"Campaign {campaign_id} send failed: {e.message}")
                session.rollback()
                _pause_on_error(session, campaign_id, e.message, log)
                clear_send_driver(campaign_id)
                return {"stopped": "error", "error": e.message}

    if get_send_driver(campaign_id) != self.request.id:
        # the campaign was restarted while this tick was sending
        return result

    countdown = next_countdown(result)
    if countdown is None:
        log.info(f"Campaign {campaign_id} completed, driver stops")
        clear_send_driver(campaign_id)
        return result

    schedule_campaign_send(campaign_id, countdown=countdown)
    log.info(f"Campaign {campaign_id} next tick in {countdown}s")
    return result
