"""Contact records and pipeline promotion"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crm.api.deps import get_company_employee, get_system_mailer
from crm.config import Settings, get_settings
from crm.contacts import service as contact_service
from crm.contacts.service import as_uuid, contact_to_dict
from crm.core.errors import ValidationError
from crm.core.pipeline import ContactPipeline
from crm.db.database import get_session
from crm.db.models import Employee
from crm.emails.mailer import SystemMailer
from crm.emails.service import send_lead_email
from crm.schemas import ContactCreateRequest, ContactUpdate, PromoteRequest

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.post("", status_code=201)
async def create_contact(
    body: ContactCreateRequest,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    mailer: SystemMailer = Depends(get_system_mailer),
):
    """
    Add a contact as a LEAD.

    A welcome email with a tracking link goes out right away; clicking it
    moves the lead to MQL.
    """
    contact = await contact_service.create_contact(
        db,
        company_id=employee.company_id,
        employee_id=employee.id,
        name=body.name,
        email=body.email,
        phone=body.phone,
        job_title=body.job_title,
        temperature=body.temperature,
        source=body.source,
    )
    await send_lead_email(db, mailer, settings, contact)
    return contact_to_dict(contact)


@router.get("")
async def list_contacts(
    status: Optional[str] = None,
    temperature: Optional[str] = None,
    assigned_employee_id: Optional[str] = Query(default=None, alias="assignedEmployeeId"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """List contacts with optional stage / temperature / owner filters"""
    assigned = None
    if assigned_employee_id:
        assigned = as_uuid(assigned_employee_id)
        if assigned is None:
            raise ValidationError("assignedEmployeeId must be a valid id")

    contacts = await contact_service.list_contacts(
        db,
        employee.company_id,
        status=status,
        temperature=temperature,
        assigned_employee_id=assigned,
        limit=limit,
        offset=offset,
    )
    return {
        "count": len(contacts),
        "contacts": [contact_to_dict(c) for c in contacts],
    }


@router.get("/{contact_id}")
async def get_contact(
    contact_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    return await contact_service.get_contact(db, contact_id, employee.company_id)


@router.patch("/{contact_id}")
async def update_contact(
    contact_id: str,
    body: ContactUpdate,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    contact = await contact_service.update_contact(db, contact_id, employee.company_id, body)
    return contact_to_dict(contact)


@router.delete("/{contact_id}")
async def delete_contact(
    contact_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    await contact_service.delete_contact(db, contact_id, employee.company_id)
    return {"message": "Contact deleted successfully"}


@router.get("/{contact_id}/history")
async def get_contact_history(
    contact_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """Full stage history for a contact (audit trail)"""
    return await contact_service.contact_history(db, contact_id, employee.company_id)


@router.post("/{contact_id}/promote")
async def promote_contact(
    contact_id: str,
    body: PromoteRequest,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """Move a contact to the next pipeline stage"""
    pipeline = ContactPipeline(db)
    new_status = await pipeline.promote(
        as_uuid(contact_id),
        body.target_status,
        value=body.value,
        employee_id=employee.id,
        company_id=employee.company_id,
    )
    return {
        "message": f"Contact moved to {new_status.value}",
        "contact_id": contact_id,
        "status": new_status.value,
    }
