from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from outreach.core.config import settings
from outreach.core import security
from outreach.core.db import get_session
from outreach.api.deps import get_current_user
from outreach.models.token import Token
from outreach.models.user import User

router = APIRouter()


@router.post("/login/access-token", response_model=Token)
def login_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
) -> Any:
    """
    OAuth2 compatible token login, get an access token for future requests.
    """
    ip = request.client.host if request.client else None
    user = session.exec(
        select(User).where(User.username == form_data.username)
    ).first()

    if not user or not security.verify_password(form_data.password, user.hashed_password):
        security.create_log(
            session, "login", form_data.username,
            "Incorrect credentials", ip, "failed",
        )
        raise HTTPException(
            status_code=400,
            detail="Incorrect username or password",
        )
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")

    security.create_log(session, "login", user.username, "Login successful", ip)
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return {
        "access_token": security.create_access_token(
            user.username, expires_delta=access_token_expires
        ),
        "token_type": "bearer",
    }


@router.get("/login/me")
def read_current_user(username: str = Depends(get_current_user)):
    return {"username": username}
