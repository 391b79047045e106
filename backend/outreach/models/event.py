from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import date


class EventBase(SQLModel):
    name: str = Field(index=True)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    city: Optional[str] = None
    state: Optional[str] = None
    slug: Optional[str] = None
    registration_url: Optional[str] = None


class Event(EventBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)


class EventCreate(EventBase):
    pass


class EventRead(EventBase):
    id: int


# Events promoted by a campaign
class CampaignEvent(SQLModel, table=True):
    __tablename__ = "campaign_event"

    campaign_id: int = Field(foreign_key="campaign.id", primary_key=True)
    event_id: int = Field(foreign_key="event.id", primary_key=True)
