"""
Request Dependencies
====================
Everything a handler needs (db session, settings, Google/SMTP clients, the
signed-in employee) arrives through FastAPI's Depends so tests can swap it.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from crm.auth.google import GoogleIdentityVerifier
from crm.auth.service import decode_token, load_employee
from crm.config import Settings, get_settings
from crm.contacts.service import as_uuid, process_lead_activity
from crm.core.errors import AuthError, ForbiddenError
from crm.db.database import get_session
from crm.db.models import Employee
from crm.emails.gmail import GmailClient
from crm.emails.mailer import SystemMailer

bearer_scheme = HTTPBearer(auto_error=False)


def get_gmail_client(settings: Settings = Depends(get_settings)) -> GmailClient:
    return GmailClient.from_settings(settings)


def get_system_mailer(settings: Settings = Depends(get_settings)) -> SystemMailer:
    return SystemMailer.from_settings(settings)


def get_identity_verifier(settings: Settings = Depends(get_settings)) -> GoogleIdentityVerifier:
    return GoogleIdentityVerifier(settings.google_client_id)


def get_lead_activity_hook():
    return process_lead_activity


async def get_current_employee(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Employee:
    if credentials is None:
        raise AuthError("Authentication required")

    payload = decode_token(settings, credentials.credentials)
    employee_id = as_uuid(payload.get("sub"))
    if employee_id is None:
        raise AuthError("Invalid authentication token")
    return await load_employee(db, employee_id)


async def get_company_employee(employee: Employee = Depends(get_current_employee)) -> Employee:
    """Signed-in employee who already belongs to a company"""
    if employee.company_id is None:
        raise ForbiddenError("Create your company before using the CRM", code="NO_COMPANY")
    return employee
