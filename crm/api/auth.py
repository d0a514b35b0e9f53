"""Sign-in, company onboarding, invitations and employee management"""

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from crm.api.deps import (
    get_company_employee,
    get_current_employee,
    get_identity_verifier,
    get_system_mailer,
)
from crm.auth import service as auth_service
from crm.auth.google import GoogleIdentityVerifier
from crm.config import Settings, get_settings
from crm.db.database import get_session
from crm.db.models import Employee
from crm.emails.mailer import SystemMailer
from crm.schemas import (
    CompanyCreateRequest,
    EmployeeProfileUpdate,
    EmployeeStatusUpdate,
    GoogleLoginRequest,
    InviteRequest,
)

router = APIRouter(tags=["auth"])


@router.post("/auth/google")
async def google_login(
    body: GoogleLoginRequest,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    verifier: GoogleIdentityVerifier = Depends(get_identity_verifier),
):
    """Exchange a Google ID token for a CRM token"""
    identity = await run_in_threadpool(verifier.verify, body.token)
    result = await auth_service.google_login(
        db,
        settings,
        identity,
        invite_token=body.invite_token,
        is_admin_registration=body.is_admin_registration,
    )
    response = {
        "token": result.token,
        "user": auth_service.employee_to_dict(result.employee),
    }
    if result.is_new_admin:
        response["isNewAdmin"] = True
    return response


@router.post("/companies", status_code=201)
async def create_company(
    body: CompanyCreateRequest,
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    result = await auth_service.create_company(db, settings, employee, body.name)
    return {
        "token": result.token,
        "user": auth_service.employee_to_dict(result.employee),
    }


@router.post("/employees/invite", status_code=201)
async def invite_employee(
    body: InviteRequest,
    admin: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    mailer: SystemMailer = Depends(get_system_mailer),
):
    employee = await auth_service.invite_employee(
        db, mailer, settings, admin,
        name=body.name,
        email=body.email,
        role=body.role,
        department=body.department,
    )
    return {
        "message": "Invitation sent",
        "employee": auth_service.employee_to_dict(employee),
    }


@router.get("/employees")
async def list_employees(
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """Company roster with contacts handled, deals closed and revenue per employee"""
    employees = await auth_service.list_employees(db, employee.company_id)
    stats = await auth_service.employee_stats(db, employee.company_id)
    empty = {"contacts_handled": 0, "deals_closed": 0, "total_revenue": 0.0}
    return {
        "count": len(employees),
        "employees": [
            {**auth_service.employee_to_dict(e), **stats.get(e.id, empty)} for e in employees
        ],
    }


# ── Own profile ───────────────────────────────────────────────────────────────

@router.get("/employees/me")
async def get_profile(employee: Employee = Depends(get_current_employee)):
    return auth_service.employee_to_dict(employee)


@router.patch("/employees/me")
async def update_profile(
    body: EmployeeProfileUpdate,
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_session),
):
    employee = await auth_service.update_profile(db, employee, body)
    return auth_service.employee_to_dict(employee)


# ── Employee management (admins) ──────────────────────────────────────────────

@router.post("/employees/{employee_id}/resend-invitation")
async def resend_invitation(
    employee_id: str,
    admin: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    mailer: SystemMailer = Depends(get_system_mailer),
):
    employee = await auth_service.resend_invitation(db, mailer, settings, admin, employee_id)
    return {
        "message": "Invitation re-sent",
        "employee": auth_service.employee_to_dict(employee),
    }


@router.patch("/employees/{employee_id}/status")
async def set_employee_status(
    employee_id: str,
    body: EmployeeStatusUpdate,
    admin: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    """Disable an employee (their sign-ins and tokens stop working) or enable them again"""
    employee = await auth_service.set_employee_status(db, admin, employee_id, body.status)
    return auth_service.employee_to_dict(employee)


@router.delete("/employees/{employee_id}")
async def delete_employee(
    employee_id: str,
    admin: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    await auth_service.delete_employee(db, admin, employee_id)
    return {"message": "Employee deleted"}
