from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from outreach.models.common import utcnow


class OperationLogBase(SQLModel):
    action: str  # e.g. "unsuppress_recipient", "company_suppress"
    username: str  # operator, or "system" for the send driver
    details: Optional[str] = None
    ip_address: Optional[str] = None
    status: str = Field(default="success")
    created_at: datetime = Field(default_factory=utcnow)


class OperationLog(OperationLogBase, table=True):
    __tablename__ = "operation_log"
    id: Optional[int] = Field(default=None, primary_key=True)


class OperationLogRead(OperationLogBase):
    id: int
