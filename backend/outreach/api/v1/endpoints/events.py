from typing import List
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from outreach.core.db import get_session
from outreach.core.exceptions import ValidationException
from outreach.models.event import Event, EventCreate, EventRead

router = APIRouter()


@router.get("/", response_model=List[EventRead])
def get_events(session: Session = Depends(get_session)):
    return session.exec(select(Event).order_by(Event.start_date, Event.id)).all()


@router.post("/", response_model=EventRead)
def create_event(event_in: EventCreate, session: Session = Depends(get_session)):
    if event_in.start_date and event_in.end_date and event_in.end_date < event_in.start_date:
        raise ValidationException("end_date must not be before start_date")
    event = Event(**event_in.model_dump())
    session.add(event)
    session.commit()
    session.refresh(event)
    return event
