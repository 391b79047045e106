from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from outreach.models.common import utcnow


class CompanyBase(SQLModel):
    name: str = Field(index=True)
    website: Optional[str] = None
    description: Optional[str] = None
    differentiators: Optional[str] = None
    category: Optional[str] = None


class Company(CompanyBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)


class CompanyCreate(CompanyBase):
    pass


class CompanyRead(CompanyBase):
    id: int
    created_at: datetime


class CompanySummary(SQLModel):
    id: int
    name: str
