"""Tracked emails, click tracking and the Gmail connect lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from crm.api.deps import get_company_employee, get_current_employee, get_gmail_client, get_lead_activity_hook
from crm.config import Settings, get_settings
from crm.core.errors import CRMError, InvalidToken
from crm.db.database import get_session
from crm.db.models import Employee
from crm.emails import service as email_service
from crm.emails.gmail import GmailClient
from crm.emails.service import email_to_dict
from crm.schemas import EmailSendRequest

logger = logging.getLogger(__name__)

tracking_router = APIRouter(tags=["tracking"])
router = APIRouter(prefix="/emails", tags=["emails"])


# ── Click tracking (public) ───────────────────────────────────────────────────

@tracking_router.get("/track/{token}")
async def track_click(
    token: str,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    lead_activity=Depends(get_lead_activity_hook),
):
    """
    Tracking link / pixel target.

    Always answers with a redirect: the landing page when the click was
    recorded, the fallback page otherwise.
    """
    try:
        click = await email_service.track_click(db, token)
        await lead_activity(db, click.contact_id, token, first_click=click.first_click)
    except InvalidToken:
        logger.warning("Unknown tracking token %s", token[:12])
        return RedirectResponse(settings.fallback_redirect_url, status_code=302)
    except Exception:
        logger.exception("Tracking click failed for token %s", token[:12])
        await db.rollback()
        return RedirectResponse(settings.fallback_redirect_url, status_code=302)

    return RedirectResponse(settings.landing_page_url, status_code=302)


# ── Sending ───────────────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def send_email(
    body: EmailSendRequest,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    gmail: GmailClient = Depends(get_gmail_client),
):
    """Send a custom email to a contact from the employee's own Gmail"""
    email = await email_service.send_custom_email(
        db,
        gmail,
        settings,
        contact_id=body.contact_id,
        employee=employee,
        company_id=employee.company_id,
        subject=body.subject,
        body=body.body,
        cc=body.cc,
        bcc=body.bcc,
        recipient_email=body.recipient_email,
    )
    return {"message": "Email sent successfully", "emailId": str(email.id)}


@router.get("/contact/{contact_id}")
async def list_contact_emails(
    contact_id: str,
    employee: Employee = Depends(get_company_employee),
    db: AsyncSession = Depends(get_session),
):
    emails = await email_service.list_emails(db, contact_id, employee.company_id)
    return [email_to_dict(e) for e in emails]


# ── Gmail connection ──────────────────────────────────────────────────────────

@router.get("/connection-status")
async def connection_status(
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_session),
):
    return await email_service.connection_status(db, employee.id)


@router.get("/connect")
async def connect(
    employee: Employee = Depends(get_current_employee),
    settings: Settings = Depends(get_settings),
    gmail: GmailClient = Depends(get_gmail_client),
):
    """OAuth consent URL for linking the employee's Gmail"""
    return {"authUrl": email_service.connect_url(gmail, settings, employee.id)}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    gmail: GmailClient = Depends(get_gmail_client),
):
    """Google redirects here after consent; we bounce back to the settings page"""
    settings_page = f"{settings.frontend_url.rstrip('/')}/settings"
    if not code or not state:
        return RedirectResponse(f"{settings_page}?email_error=invalid_callback", status_code=302)

    try:
        await email_service.complete_connection(db, gmail, settings, code, state)
    except CRMError as e:
        logger.warning("Gmail connection rejected: %s", e.message)
        await db.rollback()
        return RedirectResponse(f"{settings_page}?email_error=connection_failed", status_code=302)
    except Exception:
        logger.exception("OAuth callback error")
        await db.rollback()
        return RedirectResponse(f"{settings_page}?email_error=connection_failed", status_code=302)

    return RedirectResponse(f"{settings_page}?email_connected=true", status_code=302)


@router.delete("/disconnect")
async def disconnect(
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_session),
):
    await email_service.disconnect(db, employee.id)
    return {"message": "Gmail account disconnected successfully"}
