from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import ValidationError

from outreach.core.config import settings
from outreach.core.security import decode_access_token
from outreach.services.email_generator import EmailGenerator
from outreach.services.email_provider import ResendClient, get_email_client

TOKEN_URL = f"{settings.API_V1_STR}/login/access-token"

reusable_oauth2 = OAuth2PasswordBearer(tokenUrl=TOKEN_URL)

# a missing header is not an error here; used to name the actor in audit rows
optional_oauth2 = OAuth2PasswordBearer(tokenUrl=TOKEN_URL, auto_error=False)


def get_current_user(token: str = Depends(reusable_oauth2)) -> str:
    try:
        subject = decode_access_token(token).sub
    except (JWTError, ValidationError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Could not validate credentials")

    # single-operator dashboard
    if subject != settings.ADMIN_USERNAME:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User not authorized")
    return subject


def get_actor(token: Optional[str] = Depends(optional_oauth2)) -> str:
    """Username for audit logging. Falls back to the admin when security is off."""
    if not token:
        return settings.ADMIN_USERNAME
    try:
        return decode_access_token(token).sub or settings.ADMIN_USERNAME
    except (JWTError, ValidationError):
        return "anonymous"


def get_email_provider() -> ResendClient:
    return get_email_client()


def get_email_generator() -> EmailGenerator:
    return EmailGenerator()
