import logging

from sqlmodel import Session, select
from outreach.core.config import settings
from outreach.core.security import get_password_hash
from outreach.models.user import User

logger = logging.getLogger(__name__)


def init_db(session: Session) -> None:
    user = session.exec(
        select(User).where(User.username == settings.ADMIN_USERNAME)
    ).first()

    if not user:
        user = User(
            username=settings.ADMIN_USERNAME,
            hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
            is_superuser=True,
        )
        session.add(user)
        session.commit()
        logger.info(f"Created admin user {settings.ADMIN_USERNAME}")
