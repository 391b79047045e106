"""
Contacts and their outreach state.

Email addresses are stored lower-cased and stripped, and the column is
unique, so the same person cannot be imported twice.
"""
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from outreach.models.common import utcnow

OUTREACH_NOT_CONTACTED = "not_contacted"
OUTREACH_CONTACTED = "contacted"
OUTREACH_RESPONDED = "responded"


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


class ContactBase(SQLModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = Field(default=None, unique=True, index=True)
    title: Optional[str] = None
    seniority: Optional[str] = None
    company_id: Optional[int] = Field(default=None, foreign_key="company.id", index=True)


class Contact(ContactBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    outreach_status: str = Field(default=OUTREACH_NOT_CONTACTED, index=True)  # not_contacted/contacted/responded
    do_not_contact: bool = Field(default=False)
    email_bounced: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


class ContactCreate(ContactBase):
    pass


class ContactRead(ContactBase):
    id: int
    outreach_status: str
    do_not_contact: bool
    email_bounced: bool
    created_at: datetime


class ContactSummary(SQLModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    title: Optional[str] = None
    seniority: Optional[str] = None
