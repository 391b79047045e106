"""
Celery tasks.
"""
from outreach.tasks.sending import (
    drive_campaign_send,
    schedule_campaign_send,
)
from outreach.tasks.generation import (
    generate_campaign_content,
)

__all__ = [
    "drive_campaign_send",
    "schedule_campaign_send",
    "generate_campaign_content",
]
