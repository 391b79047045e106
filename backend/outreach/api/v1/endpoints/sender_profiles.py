from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlmodel import Session, select, func

from outreach.core.db import get_session
from outreach.core.exceptions import NotFoundException, StateConflictException, ValidationException
from outreach.models.campaign import Campaign, CAMPAIGN_SENDING
from outreach.models.common import utcnow
from outreach.models.contact import normalize_email
from outreach.models.sender_profile import (
    SenderProfile,
    SenderProfileCreate,
    SenderProfileUpdate,
    SenderProfileRead,
)

router = APIRouter()


def _get_profile(session: Session, profile_id: int) -> SenderProfile:
    profile = session.get(SenderProfile, profile_id)
    if not profile:
        raise NotFoundException("Sender profile not found", details={"sender_profile_id": profile_id})
    return profile


def _campaigns_using(session: Session, profile_id: int, status: Optional[str] = None) -> int:
    query = select(func.count(Campaign.id)).where(Campaign.sender_profile_id == profile_id)
    if status:
        query = query.where(Campaign.status == status)
    return session.exec(query).one()


@router.get("/", response_model=List[SenderProfileRead])
def get_sender_profiles(session: Session = Depends(get_session)):
    return session.exec(select(SenderProfile).order_by(SenderProfile.name)).all()


@router.post("/", response_model=SenderProfileRead)
def create_sender_profile(
    profile_in: SenderProfileCreate,
    session: Session = Depends(get_session)
):
    email = normalize_email(profile_in.email)
    if not email or "@" not in email:
        raise ValidationException("A valid sender email is required")
    profile = SenderProfile(**profile_in.model_dump(exclude={"email"}), email=email)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


@router.get("/{profile_id}", response_model=SenderProfileRead)
def get_sender_profile(profile_id: int, session: Session = Depends(get_session)):
    return _get_profile(session, profile_id)


@router.patch("/{profile_id}", response_model=SenderProfileRead)
def update_sender_profile(
    profile_id: int,
    updates: SenderProfileUpdate,
    session: Session = Depends(get_session)
):
    """The From line of a sending campaign cannot change under it."""
    profile = _get_profile(session, profile_id)
    if _campaigns_using(session, profile_id, CAMPAIGN_SENDING):
        raise StateConflictException(
            "Sender profile is used by a campaign that is sending, pause it first",
            details={"sender_profile_id": profile_id},
        )

    data = updates.model_dump(exclude_unset=True)
    if "email" in data:
        data["email"] = normalize_email(data["email"])
        if not data["email"] or "@" not in data["email"]:
            raise ValidationException("A valid sender email is required")
    for key, value in data.items():
        setattr(profile, key, value)
    profile.updated_at = utcnow()
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


@router.delete("/{profile_id}")
def delete_sender_profile(profile_id: int, session: Session = Depends(get_session)):
    profile = _get_profile(session, profile_id)
    in_use = _campaigns_using(session, profile_id)
    if in_use:
        raise StateConflictException(
            f"Sender profile is used by {in_use} campaign(s)",
            details={"sender_profile_id": profile_id, "campaigns": in_use},
        )
    session.delete(profile)
    session.commit()
    return {"success": True, "message": "Sender profile deleted"}
