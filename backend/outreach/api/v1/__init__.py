from fastapi import APIRouter, Depends
from outreach.api.v1.endpoints import (
    login, campaigns, recipients, sender_profiles, contacts, events, webhooks
)
from outreach.api.deps import get_current_user
from outreach.core.config import settings

router = APIRouter()


@router.get("/")
def read_root():
    return {"message": f"{settings.PROJECT_NAME} API v1"}


def get_auth_dependencies():
    """Router dependencies that enforce a bearer token when security is on."""
    return [Depends(get_current_user)] if settings.SECURITY_ENABLED else []


# webhooks are called by the email provider and authenticate with a signature header instead
router.include_router(login.router, tags=["login"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

PROTECTED_ROUTERS = [
    (campaigns.router, "/campaigns", "campaigns"),
    (recipients.router, "/campaigns/{campaign_id}/recipients", "recipients"),
    (sender_profiles.router, "/sender-profiles", "sender-profiles"),
    (contacts.router, "/contacts", "contacts"),
    (events.router, "/events", "events"),
]

auth_deps = get_auth_dependencies()
for endpoint_router, prefix, tag in PROTECTED_ROUTERS:
    router.include_router(endpoint_router, prefix=prefix, tags=[tag], dependencies=auth_deps)
