"""
Common test fixtures for the outreach backend test suite.

Provides:
- In-memory SQLite database session
- FastAPI TestClient with DB, email provider and generator overrides
- Factories for sender profiles, companies, contacts, campaigns and recipients
"""
import os
import tempfile

# Ensure settings are test-friendly before any outreach imports.
# These must be set before importing anything from outreach.core.config
# because `settings` is created at module level.
os.environ.setdefault("SECRET_KEY", "a" * 64)
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "testpassword1234")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECURITY_ENABLED", "false")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("SEND_TIMEZONE", "America/New_York")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="outreach-logs-"))

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool
from fastapi.testclient import TestClient

from outreach.core.exceptions import EmailProviderException, LLMServiceException
from outreach.services.email_generator import GeneratedEmail
from outreach.services.email_provider import SentEmail


class FakeEmailClient:
    """Stands in for ResendClient; records what would have been sent."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent = []
        self.fail_with = None

    def is_configured(self) -> bool:
        return self.configured

    def send_email(self, from_, to, subject, html, reply_to=None):
        if self.fail_with:
            raise EmailProviderException(self.fail_with)
        self.sent.append({
            "from": from_, "to": to, "subject": subject, "html": html, "reply_to": reply_to,
        })
        return SentEmail(id=f"msg_{len(self.sent)}")


class FakeGenerator:
    """Stands in for EmailGenerator; fails for contact ids listed in ``fail_for``."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.fail_for = set()
        self.calls = []

    def is_configured(self) -> bool:
        return self.configured

    def generate(self, campaign, sender, contact, company=None, events=None):
        self.calls.append(contact.id)
        if contact.id in self.fail_for:
            raise LLMServiceException("Email generation failed: model overloaded")
        return GeneratedEmail(
            subject=f"Hello {contact.first_name}",
            body=f"Hi {contact.first_name},\n\nThis is about {campaign.purpose}.\n\nThanks",
        )


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine with all tables."""
    from outreach import models  # noqa: F401

    _engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(_engine)
    return _engine


@pytest.fixture
def session(engine):
    """Provide a database session for tests."""
    with Session(engine) as s:
        yield s


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def client(session, email_client, generator):
    """
    FastAPI TestClient with the DB session, email provider and generator
    dependencies overridden.
    """
    from outreach.main import app
    from outreach.core.db import get_session
    from outreach.api.deps import get_email_provider, get_email_generator

    def _override_get_session():
        yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[get_email_provider] = lambda: email_client
    app.dependency_overrides[get_email_generator] = lambda: generator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sender_profile(session):
    from outreach.models.sender_profile import SenderProfile

    profile = SenderProfile(
        name="Dana Reyes",
        email="dana@example.com",
        title="Partnerships",
        signature="Dana Reyes\nPartnerships",
    )
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


@pytest.fixture
def make_company(session):
    from outreach.models.company import Company

    def _make(name="Acme Health"):
        company = Company(name=name)
        session.add(company)
        session.commit()
        session.refresh(company)
        return company

    return _make


@pytest.fixture
def make_contact(session):
    from outreach.models.contact import Contact

    counter = {"n": 0}

    def _make(first_name=None, email=None, company=None, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        contact = Contact(
            first_name=first_name or f"Person{n}",
            last_name="Tester",
            email=email if email is not None else f"person{n}@example.com",
            company_id=company.id if company else None,
            **kwargs,
        )
        session.add(contact)
        session.commit()
        session.refresh(contact)
        return contact

    return _make


@pytest.fixture
def make_campaign(session, sender_profile):
    from outreach.models.campaign import Campaign

    def _make(status="draft", **kwargs):
        # a window of 0-24 keeps the send tests independent of the time of day
        values = dict(
            name="Spring outreach",
            purpose="invite clinic owners to the spring expo",
            sender_profile_id=sender_profile.id,
            send_window_start=0,
            send_window_end=24,
            min_delay_seconds=120,
            max_delay_seconds=300,
            daily_send_limit=50,
            status=status,
        )
        values.update(kwargs)
        campaign = Campaign(**values)
        session.add(campaign)
        session.commit()
        session.refresh(campaign)
        return campaign

    return _make


@pytest.fixture
def campaign(make_campaign):
    return make_campaign()


@pytest.fixture
def make_recipient(session):
    from outreach.models.recipient import CampaignRecipient
    from outreach.services.email_format import body_to_html

    def _make(campaign, contact, status="pending", subject=None, body=None, **kwargs):
        if status != "pending" and body is None:
            subject = subject or f"Hello {contact.first_name}"
            body = f"Hi {contact.first_name},\n\nQuick note."
        recipient = CampaignRecipient(
            campaign_id=campaign.id,
            contact_id=contact.id,
            company_id=contact.company_id,
            subject=subject,
            body=body,
            body_html=body_to_html(body) if body else None,
            status=status,
            approved=status == "approved",
            **kwargs,
        )
        session.add(recipient)
        session.commit()
        session.refresh(recipient)
        return recipient

    return _make
