"""
Sender identity used as the From line of a campaign.
"""
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from outreach.models.common import utcnow


class SenderProfileBase(SQLModel):
    name: str
    email: str = Field(index=True)
    title: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None  # plain text, one line per row


class SenderProfile(SenderProfileBase, table=True):
    __tablename__ = "sender_profile"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def from_header(self) -> str:
        return f"{self.name} <{self.email}>"


class SenderProfileCreate(SenderProfileBase):
    pass


class SenderProfileUpdate(SQLModel):
    name: Optional[str] = None
    email: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None


class SenderProfileRead(SenderProfileBase):
    id: int
    created_at: datetime
