"""
Employee Auth
=============
Google sign-in, invitation acceptance and JWT issuance.

Employees only get in through an invitation from their company's admin;
admins may self-register and create their company afterwards.
"""

import html
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm.config import Settings
from crm.contacts.service import normalize_email
from crm.core.errors import AuthError, ForbiddenError, NotFoundError, StateConflictError, ValidationError
from crm.db.models import (
    Company,
    Contact,
    ContactEvent as EventModel,
    Deal,
    Email,
    Employee,
    FollowupSession,
    MailboxToken,
    Opportunity,
)
from crm.emails.mailer import SystemMailer
from crm.schemas import EmployeeProfileUpdate

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
STATE_PURPOSE = "gmail_connect"

ROLES = {"ADMIN", "EMPLOYEE"}


@dataclass
class LoginResult:
    token: str
    employee: Employee
    is_new_admin: bool = False


def employee_to_dict(e: Employee) -> dict:
    return {
        "id": str(e.id),
        "company_id": str(e.company_id) if e.company_id else None,
        "name": e.name,
        "email": e.email,
        "phone": e.phone,
        "role": e.role,
        "department": e.department,
        "invitation_status": e.invitation_status,
        "last_login_at": e.last_login_at.isoformat() if e.last_login_at else None,
    }


# ── Tokens ────────────────────────────────────────────────────────────────────

def issue_token(settings: Settings, employee: Employee) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(employee.id),
        "company_id": str(employee.company_id) if employee.company_id else None,
        "role": employee.role,
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(settings: Settings, token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired, please sign in again", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid authentication token")
    if payload.get("purpose"):
        raise AuthError("Invalid authentication token")
    return payload


def issue_state_token(settings: Settings, employee_id) -> str:
    """Short-lived signed OAuth `state` naming the employee connecting a mailbox"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(employee_id),
        "purpose": STATE_PURPOSE,
        "nonce": secrets.token_hex(8),
        "exp": now + timedelta(minutes=settings.oauth_state_expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def read_state_token(settings: Settings, state: str) -> uuid.UUID:
    try:
        payload = jwt.decode(state, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        raise AuthError("Invalid OAuth state", code="INVALID_STATE")
    if payload.get("purpose") != STATE_PURPOSE:
        raise AuthError("Invalid OAuth state", code="INVALID_STATE")
    return uuid.UUID(payload["sub"])


# ── Login ─────────────────────────────────────────────────────────────────────

async def _employee_by(db: AsyncSession, column, value) -> Optional[Employee]:
    result = await db.execute(select(Employee).where(column == value))
    return result.scalar_one_or_none()


async def google_login(
    db: AsyncSession,
    settings: Settings,
    identity: Dict[str, Any],
    invite_token: Optional[str] = None,
    is_admin_registration: bool = False,
) -> LoginResult:
    """Sign an employee in from a verified Google identity"""
    email = identity["email"].strip().lower()
    name = identity.get("name") or email.split("@")[0]

    employee = await _employee_by(db, Employee.email, email)

    # 1. Invitation link
    if invite_token:
        invited = await _employee_by(db, Employee.invitation_token, invite_token)
        if not invited:
            raise ValidationError("Invalid or expired invitation link", code="INVALID_INVITE")
        if invited.email.lower() != email:
            raise ValidationError(
                f"This invitation was sent to {invited.email}. Please sign in with that email address.",
                code="EMAIL_MISMATCH",
            )
        invited.invitation_status = "ACTIVE"
        invited.invitation_token = None
        employee = invited

    # 2. Admin self-registration (company is created during onboarding)
    if is_admin_registration and not employee:
        employee = Employee(
            id=uuid.uuid4(),
            company_id=None,
            name=name,
            email=email,
            role="ADMIN",
            invitation_status="ACTIVE",
            last_login_at=datetime.now(timezone.utc),
        )
        db.add(employee)
        await db.commit()
        logger.info("New admin %s registered", email)
        return LoginResult(token=issue_token(settings, employee), employee=employee, is_new_admin=True)

    # 3. Everyone else must already exist and be active
    if not employee:
        raise ForbiddenError(
            "You don't have access to this application. Please contact your administrator for an invitation.",
            code="NOT_INVITED",
        )
    if employee.invitation_status == "INVITED":
        raise ForbiddenError(
            "Please use the invitation link sent to your email to complete registration.",
            code="PENDING_INVITATION",
        )
    if employee.invitation_status == "DISABLED":
        raise ForbiddenError(
            "Your account has been disabled. Please contact your administrator.",
            code="ACCOUNT_DISABLED",
        )

    employee.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info("Employee %s signed in", email)
    return LoginResult(token=issue_token(settings, employee), employee=employee)


async def load_employee(db: AsyncSession, employee_id) -> Employee:
    employee = await db.get(Employee, employee_id)
    if not employee or employee.invitation_status != "ACTIVE":
        raise AuthError("Account is not active")
    return employee


# ── Company onboarding & invitations ──────────────────────────────────────────

async def create_company(db: AsyncSession, settings: Settings, admin: Employee, name: str) -> LoginResult:
    if admin.role != "ADMIN":
        raise ForbiddenError("Only admins can create a company")
    if admin.company_id is not None:
        raise ValidationError("You already belong to a company", code="COMPANY_EXISTS")

    company = Company(id=uuid.uuid4(), name=name.strip())
    db.add(company)
    admin.company_id = company.id
    await db.commit()

    logger.info("Company %s created by %s", company.name, admin.email)
    # Re-issue so the token carries the new company
    return LoginResult(token=issue_token(settings, admin), employee=admin)


async def _send_invitation(mailer: SystemMailer, settings: Settings, admin: Employee, employee: Employee) -> None:
    link = f"{settings.frontend_url.rstrip('/')}/invite/{employee.invitation_token}"
    body = (
        f"<p>Hello {html.escape(employee.name)},</p>"
        f"<p>{html.escape(admin.name)} invited you to join the team CRM.</p>"
        f'<p><a href="{link}">Accept invitation</a></p>'
    )
    try:
        await run_in_threadpool(mailer.send, employee.email, "You're invited to the CRM", body)
    except OSError as e:
        # smtplib errors are OSError subclasses
        logger.error("Failed to send invitation to %s: %s", employee.email, e)


def _require_admin(admin: Employee, action: str) -> None:
    if admin.role != "ADMIN":
        raise ForbiddenError(f"Only admins can {action}")


async def invite_employee(
    db: AsyncSession,
    mailer: SystemMailer,
    settings: Settings,
    admin: Employee,
    name: str,
    email: str,
    role: str = "EMPLOYEE",
    department: Optional[str] = None,
) -> Employee:
    _require_admin(admin, "invite employees")
    if admin.company_id is None:
        raise ValidationError("Create your company before inviting employees", code="NO_COMPANY")
    role = (role or "EMPLOYEE").upper()
    if role not in ROLES:
        raise ValidationError("Role must be ADMIN or EMPLOYEE")

    email = normalize_email(email)
    if await _employee_by(db, Employee.email, email):
        raise ValidationError("An employee with this email already exists", code="DUPLICATE_EMPLOYEE")

    employee = Employee(
        id=uuid.uuid4(),
        company_id=admin.company_id,
        name=name.strip(),
        email=email,
        role=role,
        department=department,
        invitation_status="INVITED",
        invitation_token=secrets.token_hex(32),
        invitation_sent_at=datetime.now(timezone.utc),
        invited_by=admin.id,
    )
    db.add(employee)
    await db.commit()

    await _send_invitation(mailer, settings, admin, employee)

    logger.info("Employee %s invited by %s", email, admin.email)
    return employee


async def list_employees(db: AsyncSession, company_id) -> list:
    result = await db.execute(
        select(Employee).where(Employee.company_id == company_id).order_by(Employee.created_at.desc())
    )
    return list(result.scalars().all())


async def employee_stats(db: AsyncSession, company_id) -> Dict[uuid.UUID, dict]:
    """Contacts handled, deals closed and revenue per employee of a company"""
    stats: Dict[uuid.UUID, dict] = {}

    def entry(employee_id) -> dict:
        return stats.setdefault(employee_id, {"contacts_handled": 0, "deals_closed": 0, "total_revenue": 0.0})

    contacts = await db.execute(
        select(Contact.assigned_employee_id, func.count(Contact.id))
        .where(Contact.company_id == company_id, Contact.assigned_employee_id.is_not(None))
        .group_by(Contact.assigned_employee_id)
    )
    for employee_id, handled in contacts.all():
        entry(employee_id)["contacts_handled"] = handled

    # Deals are credited to the employee who owns the opportunity
    deals = await db.execute(
        select(Opportunity.employee_id, func.count(Deal.id), func.coalesce(func.sum(Deal.deal_value), 0))
        .select_from(Deal)
        .join(Opportunity, Deal.opportunity_id == Opportunity.id)
        .join(Contact, Deal.contact_id == Contact.id)
        .where(Contact.company_id == company_id, Opportunity.employee_id.is_not(None))
        .group_by(Opportunity.employee_id)
    )
    for employee_id, closed, revenue in deals.all():
        row = entry(employee_id)
        row["deals_closed"] = closed
        row["total_revenue"] = float(revenue)

    return stats


# ── Employee management ───────────────────────────────────────────────────────

async def _company_employee(db: AsyncSession, admin: Employee, employee_id) -> Employee:
    """Employee of the admin's own company or EMPLOYEE_NOT_FOUND"""
    try:
        eid = employee_id if isinstance(employee_id, uuid.UUID) else uuid.UUID(str(employee_id))
    except ValueError:
        raise NotFoundError("Employee not found", code="EMPLOYEE_NOT_FOUND")

    employee = await db.get(Employee, eid)
    if employee is None or employee.company_id != admin.company_id:
        raise NotFoundError("Employee not found", code="EMPLOYEE_NOT_FOUND")
    return employee


async def update_profile(db: AsyncSession, employee: Employee, updates: EmployeeProfileUpdate) -> Employee:
    """Employees edit their own name, phone and department"""
    fields = updates.model_dump(exclude_unset=True)

    if "name" in fields:
        if not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty")
        employee.name = fields["name"].strip()
    if "phone" in fields:
        employee.phone = fields["phone"]
    if "department" in fields:
        employee.department = fields["department"]

    if fields:
        employee.updated_at = datetime.now(timezone.utc)
        await db.commit()
    return employee


async def resend_invitation(
    db: AsyncSession, mailer: SystemMailer, settings: Settings, admin: Employee, employee_id
) -> Employee:
    """Issue a fresh invitation link; the previous one stops working"""
    _require_admin(admin, "resend invitations")
    employee = await _company_employee(db, admin, employee_id)
    if employee.invitation_status != "INVITED":
        raise StateConflictError("Employee has already accepted the invitation", code="NOT_INVITED")

    employee.invitation_token = secrets.token_hex(32)
    employee.invitation_sent_at = datetime.now(timezone.utc)
    await db.commit()

    await _send_invitation(mailer, settings, admin, employee)

    logger.info("Invitation re-sent to %s by %s", employee.email, admin.email)
    return employee


async def set_employee_status(db: AsyncSession, admin: Employee, employee_id, status: str) -> Employee:
    """Disable an employee or re-enable a disabled one"""
    _require_admin(admin, "change employee status")
    status = (status or "").upper()
    if status not in ("ACTIVE", "DISABLED"):
        raise ValidationError("Status must be ACTIVE or DISABLED")

    employee = await _company_employee(db, admin, employee_id)
    if employee.id == admin.id:
        raise ValidationError("You cannot change your own status", code="SELF_ACTION")

    if status == "DISABLED":
        employee.invitation_status = "DISABLED"
        # An outstanding invitation link must not re-activate the account
        employee.invitation_token = None
    else:
        if employee.invitation_status != "DISABLED":
            raise StateConflictError(
                f"Only disabled employees can be enabled (currently {employee.invitation_status})"
            )
        employee.invitation_status = "ACTIVE"

    employee.updated_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info("Employee %s set to %s by %s", employee.email, status, admin.email)
    return employee


async def delete_employee(db: AsyncSession, admin: Employee, employee_id) -> None:
    """Remove an employee; their contacts, sessions and emails stay with the company"""
    _require_admin(admin, "delete employees")
    employee = await _company_employee(db, admin, employee_id)
    if employee.id == admin.id:
        raise ValidationError("You cannot delete your own account", code="SELF_ACTION")

    eid = employee.id
    email = employee.email
    for model, column in (
        (Contact, Contact.assigned_employee_id),
        (EventModel, EventModel.employee_id),
        (FollowupSession, FollowupSession.employee_id),
        (Email, Email.employee_id),
        (Opportunity, Opportunity.employee_id),
        (Employee, Employee.invited_by),
    ):
        await db.execute(update(model).where(column == eid).values({column.key: None}))
    await db.execute(delete(MailboxToken).where(MailboxToken.employee_id == eid))
    await db.execute(delete(Employee).where(Employee.id == eid))
    await db.commit()

    logger.info("Employee %s deleted by %s", email, admin.email)
