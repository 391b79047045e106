"""
Contacts and companies. Kept small: enough to import people and attach
them to campaigns.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from outreach.core.db import get_session
from outreach.core.exceptions import StateConflictException, ValidationException
from outreach.models.company import Company, CompanyCreate, CompanyRead
from outreach.models.contact import Contact, ContactCreate, ContactRead, normalize_email

router = APIRouter()


@router.get("/companies", response_model=List[CompanyRead])
def get_companies(
    skip: int = 0,
    limit: int = 100,
    session: Session = Depends(get_session)
):
    return session.exec(select(Company).order_by(Company.name).offset(skip).limit(limit)).all()


@router.post("/companies", response_model=CompanyRead)
def create_company(company_in: CompanyCreate, session: Session = Depends(get_session)):
    if not company_in.name.strip():
        raise ValidationException("Company name is required")
    company = Company(**company_in.model_dump())
    session.add(company)
    session.commit()
    session.refresh(company)
    return company


@router.get("/", response_model=List[ContactRead])
def get_contacts(
    skip: int = 0,
    limit: int = 100,
    company_id: Optional[int] = None,
    outreach_status: Optional[str] = None,
    session: Session = Depends(get_session)
):
    query = select(Contact)
    if company_id is not None:
        query = query.where(Contact.company_id == company_id)
    if outreach_status:
        query = query.where(Contact.outreach_status == outreach_status)
    return session.exec(query.order_by(Contact.id).offset(skip).limit(limit)).all()


@router.post("/", response_model=ContactRead)
def create_contact(contact_in: ContactCreate, session: Session = Depends(get_session)):
    """Emails are stored normalized; the same address cannot be added twice."""
    email = normalize_email(contact_in.email)
    if email:
        existing = session.exec(select(Contact).where(Contact.email == email)).first()
        if existing:
            raise StateConflictException(
                "A contact with this email already exists",
                details={"contact_id": existing.id, "email": email},
            )
    if contact_in.company_id is not None and not session.get(Company, contact_in.company_id):
        raise ValidationException("Company not found", details={"company_id": contact_in.company_id})

    contact = Contact(**contact_in.model_dump(exclude={"email"}), email=email)
    session.add(contact)
    session.commit()
    session.refresh(contact)
    return contact
