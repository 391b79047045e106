from sqlmodel import SQLModel, create_engine, Session
from outreach.core.config import settings

if settings.DATABASE_URL.startswith("sqlite"):
    # shared between the API threads and the Celery worker
    engine = create_engine(settings.DATABASE_URL, echo=False, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def init_db():
    """Create any missing tables. Constraint changes on existing databases go through the migrate_* scripts."""
    from outreach import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
