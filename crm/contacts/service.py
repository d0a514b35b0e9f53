"""
Contacts
========
Contact records scoped to a company, plus the lead-activity hook that
email clicks feed into.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.contact_states import ContactStatus, PipelineEvent, Temperature, Trigger, parse_enum
from crm.core.errors import ContactNotFound, ValidationError
from crm.core.pipeline import ContactPipeline
from crm.db.models import Contact, ContactEvent as EventModel, Deal, Email, FollowupSession, Opportunity
from crm.schemas import ContactUpdate

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

CLICK_INTEREST_POINTS = 10
MAX_INTEREST_SCORE = 100


def as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def normalize_email(email: Optional[str]) -> str:
    cleaned = (email or "").strip().lower()
    if not EMAIL_REGEX.match(cleaned):
        raise ValidationError(f"Invalid email address: {email}")
    return cleaned


def contact_to_dict(contact: Contact, average_rating: Optional[float] = None) -> dict:
    data = {
        "id": str(contact.id),
        "company_id": str(contact.company_id),
        "assigned_employee_id": str(contact.assigned_employee_id) if contact.assigned_employee_id else None,
        "name": contact.name,
        "email": contact.email,
        "phone": contact.phone,
        "job_title": contact.job_title,
        "source": contact.source,
        "status": contact.status,
        "temperature": contact.temperature,
        "interest_score": contact.interest_score,
        "created_at": contact.created_at.isoformat() if contact.created_at else None,
        "updated_at": contact.updated_at.isoformat() if contact.updated_at else None,
    }
    if average_rating is not None:
        data["average_rating"] = average_rating
    return data


async def load_contact(db: AsyncSession, contact_id, company_id=None, for_update: bool = False) -> Contact:
    """Fetch a contact inside the caller's company or raise ContactNotFound"""
    cid = as_uuid(contact_id)
    if cid is None:
        raise ContactNotFound()

    query = select(Contact).where(Contact.id == cid)
    if company_id is not None:
        query = query.where(Contact.company_id == company_id)
    if for_update:
        query = query.with_for_update()

    result = await db.execute(query)
    contact = result.scalar_one_or_none()
    if not contact:
        raise ContactNotFound()
    return contact


async def create_contact(
    db: AsyncSession,
    company_id,
    employee_id,
    name: str,
    email: str,
    phone: Optional[str] = None,
    job_title: Optional[str] = None,
    temperature: str = Temperature.COLD.value,
    source: Optional[str] = None,
) -> Contact:
    email = normalize_email(email)
    temp = parse_enum(Temperature, temperature)
    if temp is None:
        raise ValidationError("Temperature must be HOT, WARM or COLD")

    existing = await db.execute(
        select(Contact.id).where(Contact.company_id == company_id, Contact.email == email)
    )
    if existing.scalar_one_or_none():
        raise ValidationError("A contact with this email already exists", code="DUPLICATE_CONTACT")

    contact = Contact(
        id=uuid.uuid4(),
        company_id=company_id,
        assigned_employee_id=employee_id,
        name=name.strip(),
        email=email,
        phone=phone,
        job_title=job_title,
        source=source,
        status=ContactStatus.LEAD.value,
        temperature=temp.value,
        interest_score=0,
        tracking_token=uuid.uuid4().hex,
    )
    db.add(contact)

    # Initial event
    db.add(EventModel(
        id=uuid.uuid4(),
        contact_id=contact.id,
        employee_id=employee_id,
        from_status="NONE",
        event=PipelineEvent.CONTACT_CREATED.value,
        to_status=ContactStatus.LEAD.value,
        payload={"source": source},
        occurred_at=datetime.now(timezone.utc),
    ))

    await db.commit()
    logger.info("Contact %s created as LEAD", str(contact.id)[:8])
    return contact


async def list_contacts(
    db: AsyncSession,
    company_id,
    status: Optional[str] = None,
    temperature: Optional[str] = None,
    assigned_employee_id=None,
    limit: int = 50,
    offset: int = 0,
) -> list:
    query = select(Contact).where(Contact.company_id == company_id)

    if status:
        if parse_enum(ContactStatus, status) is None:
            raise ValidationError(f"Unknown pipeline stage: {status}")
        query = query.where(Contact.status == status)
    if temperature:
        if parse_enum(Temperature, temperature) is None:
            raise ValidationError("Temperature must be HOT, WARM or COLD")
        query = query.where(Contact.temperature == temperature)
    if assigned_employee_id is not None:
        query = query.where(Contact.assigned_employee_id == assigned_employee_id)

    query = query.order_by(Contact.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_contact(db: AsyncSession, contact_id, company_id) -> dict:
    contact = await load_contact(db, contact_id, company_id)

    avg = await db.execute(
        select(func.avg(FollowupSession.rating)).where(
            FollowupSession.contact_id == contact.id,
            FollowupSession.rating.isnot(None),
        )
    )
    average = avg.scalar_one_or_none()
    return contact_to_dict(contact, average_rating=round(float(average), 2) if average is not None else 0.0)


async def update_contact(db: AsyncSession, contact_id, company_id, updates: ContactUpdate) -> Contact:
    contact = await load_contact(db, contact_id, company_id)

    fields = updates.model_dump(exclude_unset=True)
    values = {}

    if "name" in fields:
        if not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty")
        values["name"] = fields["name"].strip()

    if "email" in fields:
        email = normalize_email(fields["email"])
        if email != contact.email:
            clash = await db.execute(
                select(Contact.id).where(Contact.company_id == company_id, Contact.email == email)
            )
            if clash.scalar_one_or_none():
                raise ValidationError("A contact with this email already exists", code="DUPLICATE_CONTACT")
        values["email"] = email

    if "phone" in fields:
        values["phone"] = fields["phone"]

    if "job_title" in fields:
        values["job_title"] = fields["job_title"]

    if "temperature" in fields:
        temp = parse_enum(Temperature, fields["temperature"])
        if temp is None:
            raise ValidationError("Temperature must be HOT, WARM or COLD")
        values["temperature"] = temp.value

    if not values:
        return contact

    values["updated_at"] = datetime.now(timezone.utc)
    await db.execute(update(Contact).where(Contact.id == contact.id).values(**values))
    await db.commit()
    await db.refresh(contact)
    return contact


async def delete_contact(db: AsyncSession, contact_id, company_id) -> None:
    """Remove a contact together with everything it owns"""
    contact = await load_contact(db, contact_id, company_id)

    for model in (Deal, Opportunity, Email, FollowupSession, EventModel):
        await db.execute(delete(model).where(model.contact_id == contact.id))
    await db.execute(delete(Contact).where(Contact.id == contact.id))
    await db.commit()
    logger.info("Contact %s deleted", str(contact.id)[:8])


async def contact_history(db: AsyncSession, contact_id, company_id) -> dict:
    """Full stage history for a contact (audit trail)"""
    contact = await load_contact(db, contact_id, company_id)

    events_result = await db.execute(
        select(EventModel)
        .where(EventModel.contact_id == contact.id)
        .order_by(EventModel.occurred_at)
    )
    events = events_result.scalars().all()

    return {
        "contact_id": str(contact.id),
        "current_status": contact.status,
        "event_count": len(events),
        "events": [
            {
                "from_status": e.from_status,
                "event": e.event,
                "to_status": e.to_status,
                "payload": e.payload,
                "occurred_at": e.occurred_at.isoformat(),
            }
            for e in events
        ],
    }


async def process_lead_activity(db: AsyncSession, contact_id, token: str, first_click: bool = True) -> Optional[ContactStatus]:
    """
    Lead-activity hook run on every tracked email click.

    A LEAD becomes an MQL; contacts further down the funnel are left alone,
    so repeated clicks are harmless. Interest points only count the first click.
    """
    contact = await load_contact(db, contact_id, for_update=True)

    # Interest points and the promotion land in one commit
    if first_click:
        contact.interest_score = min(MAX_INTEREST_SCORE, (contact.interest_score or 0) + CLICK_INTEREST_POINTS)

    if contact.status != ContactStatus.LEAD.value:
        await db.commit()
        return None

    try:
        return await ContactPipeline(db).promote(
            contact.id,
            ContactStatus.MQL,
            trigger=Trigger.EMAIL_CLICK,
            payload={"token": token},
        )
    except Exception:
        await db.rollback()
        raise
