import uuid
import logging
from datetime import timedelta, datetime, timezone
from typing import Any, Optional, Union

from jose import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from outreach.core.config import settings
from outreach.models.operation_log import OperationLog
from outreach.models.token import TokenPayload

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject: Union[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(subject),
        "iat": int(issued.timestamp()),
        "exp": issued + lifetime,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """Raises jose.JWTError for bad or expired tokens, pydantic.ValidationError for odd claims."""
    claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return TokenPayload(**claims)


def create_log(
    session: Session,
    action: str,
    username: str,
    details: Optional[str] = None,
    ip_address: Optional[str] = None,
    status: str = "success",
    commit: bool = True,
) -> OperationLog:
    """Write an operator audit row. With commit=False the caller's transaction owns it."""
    entry = OperationLog(action=action, username=username, details=details, ip_address=ip_address, status=status)
    session.add(entry)
    if commit:
        session.commit()
    logger.info(f"Audit {action} by {username}: {details or ''} [{status}]")
    return entry
