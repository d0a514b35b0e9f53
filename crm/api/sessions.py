"""Follow-up session endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crm.api.deps import get_company_employee
from crm.core.errors import NotFoundError, StateConflictError
from crm.db.database import get_session
from crm.db.models import Employee
from crm.schemas import SessionCreateRequest, SessionUpdate
from crm.sessions import service as session_service
from crm.sessions.service import session_to_dict

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", status_code=201)
async def create_session(
    body: SessionCreateRequest,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """
    Log a follow-up session for a contact.

    The stage must match the contact's current status and each stage allows
    at most five sessions. An unknown contact or a stage mismatch is
    reported as 403.
    """
    try:
        session = await session_service.create_session(
            db,
            contact_id=body.contact_id,
            employee_id=employee.id,
            company_id=employee.company_id,
            stage=body.stage,
            session_no=body.session_no,
            session_status=body.session_status,
            rating=body.rating,
            remarks=body.remarks,
        )
    except (NotFoundError, StateConflictError) as e:
        e.status_code = 403
        raise
    return {"message": "Session created successfully", "id": str(session.id)}


@router.get("/contact/{contact_id}")
async def list_contact_sessions(
    contact_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    sessions = await session_service.list_sessions(db, contact_id, employee.company_id)
    return [session_to_dict(s) for s in sessions]


@router.get("/contact/{contact_id}/{stage}")
async def list_stage_sessions(
    contact_id: str,
    stage: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    sessions = await session_service.list_sessions_by_stage(db, contact_id, employee.company_id, stage)
    return [session_to_dict(s) for s in sessions]


@router.get("/contact/{contact_id}/{stage}/average")
async def stage_average_rating(
    contact_id: str,
    stage: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """Average rating of a contact's sessions in one stage"""
    sessions = await session_service.list_sessions_by_stage(db, contact_id, employee.company_id, stage)
    average = await session_service.average_rating(db, contact_id, stage)
    return {
        "contact_id": contact_id,
        "stage": stage,
        "count": len(sessions),
        "average_rating": average,
    }


@router.patch("/{session_id}")
async def update_session(
    session_id: str,
    body: SessionUpdate,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    session = await session_service.update_session(db, session_id, employee.company_id, body)
    return session_to_dict(session)


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    await session_service.delete_session(db, session_id, employee.company_id)
    return {"message": "Session deleted successfully"}
