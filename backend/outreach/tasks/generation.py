from typing import Optional

from sqlmodel import Session

from outreach.core.celery_app import celery_app
from outreach.core.db import engine
from outreach.core.logging import get_task_logger
from outreach.models.campaign import Campaign
from outreach.services.email_generator import EmailGenerator
from outreach.services.generation import ContentGenerator


@celery_app.task(bind=True, max_retries=0)
def generate_campaign_content(self, campaign_id: int, batch_size: Optional[int] = None, all_batches: bool = True):
    """Run a generation pass outside the request cycle."""
    log = get_task_logger("generate_campaign_content", self.request.id, campaign_id)

    with Session(engine) as session:
        campaign = session.get(Campaign, campaign_id)
        if not campaign:
            log.error(f"Campaign {campaign_id} not found")
            return {"error": "Campaign not found"}

        result = ContentGenerator(session, EmailGenerator()).run(
            campaign, batch_size=batch_size, all_batches=all_batches
        )
        log.info(f"Campaign {campaign_id} generation: {result.generated} generated, {result.errors} errors, {result.remaining} remaining")
        return result.to_dict()
