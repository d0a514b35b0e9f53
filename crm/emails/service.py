"""
Emails & Tracking
=================
Every outbound email carries a unique tracking token. Clicking the tracking
link (or loading the pixel) marks the email clicked and feeds the contact's
lead-activity hook.
"""

import html
import logging
import smtplib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm.auth.service import issue_state_token, read_state_token
from crm.config import Settings
from crm.contacts.service import load_contact, normalize_email
from crm.core.errors import CRMError, EmailNotConnected, InvalidToken, SendFailed, ValidationError
from crm.db.models import Contact, Email, Employee, MailboxToken
from crm.emails.gmail import GmailClient, build_raw_message
from crm.emails.mailer import SystemMailer

logger = logging.getLogger(__name__)

LEAD_EMAIL_SUBJECT = "Welcome! Learn more about our services"


@dataclass
class ClickResult:
    contact_id: uuid.UUID
    email_id: uuid.UUID
    first_click: bool


def tracking_url(settings: Settings, token: str) -> str:
    return f"{settings.tracking_base_url}/{token}"


def normalize_address_list(addresses: Optional[str]) -> Optional[str]:
    """Validate a comma-separated Cc/Bcc list; None when empty"""
    if not addresses or not addresses.strip():
        return None
    return ", ".join(normalize_email(a) for a in addresses.split(",") if a.strip()) or None


def email_to_dict(e: Email) -> dict:
    return {
        "id": str(e.id),
        "contact_id": str(e.contact_id),
        "employee_id": str(e.employee_id) if e.employee_id else None,
        "subject": e.subject,
        "body": e.body,
        "clicked": e.clicked,
        "gmail_message_id": e.gmail_message_id,
        "sent_at": e.sent_at.isoformat() if e.sent_at else None,
    }


def _lead_email_html(name: str, link: str) -> str:
    return f"""
    <html>
      <body>
        <h2>Hello {html.escape(name)},</h2>
        <p>Thank you for your interest in our services.</p>
        <p>Click the link below to learn more:</p>
        <a href="{link}" style="display:inline-block;padding:12px 24px;background-color:#007bff;color:white;text-decoration:none;border-radius:4px;">Learn More</a>
        <p>Best regards,<br/>The Team</p>
      </body>
    </html>
    """


def _tracked_html(body: str, link: str) -> str:
    body_html = body.replace("\n", "<br>")
    return f"""
    <html>
      <body>
        {body_html}
        <br><br>
        <img src="{link}?type=pixel" width="1" height="1" style="display:none" alt="" />
      </body>
    </html>
    """


# ── Lead emails (system mailer) ───────────────────────────────────────────────

async def send_lead_email(db: AsyncSession, mailer: SystemMailer, settings: Settings, contact: Contact) -> Email:
    """Welcome email with a tracking link; delivery failures don't undo the record"""
    token = contact.tracking_token or uuid.uuid4().hex
    body = _lead_email_html(contact.name, tracking_url(settings, token))

    email = Email(
        id=uuid.uuid4(),
        contact_id=contact.id,
        subject=LEAD_EMAIL_SUBJECT,
        body=body,
        tracking_token=token,
        clicked=False,
    )
    db.add(email)
    await db.commit()

    try:
        await run_in_threadpool(mailer.send, contact.email, LEAD_EMAIL_SUBJECT, body)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send lead email to %s: %s", contact.email, e)

    return email


# ── Click tracking ────────────────────────────────────────────────────────────

async def track_click(db: AsyncSession, token: str) -> ClickResult:
    result = await db.execute(select(Email).where(Email.tracking_token == token))
    email = result.scalar_one_or_none()

    if not email:
        raise InvalidToken()

    first_click = not email.clicked
    email.clicked = True
    await db.commit()

    logger.info("Email %s clicked (first=%s)", str(email.id)[:8], first_click)
    return ClickResult(contact_id=email.contact_id, email_id=email.id, first_click=first_click)


async def list_emails(db: AsyncSession, contact_id, company_id) -> list:
    contact = await load_contact(db, contact_id, company_id)
    result = await db.execute(
        select(Email).where(Email.contact_id == contact.id).order_by(Email.sent_at.desc())
    )
    return list(result.scalars().all())


# ── Mailbox connection (Gmail OAuth) ──────────────────────────────────────────

async def _mailbox_token(db: AsyncSession, employee_id) -> Optional[MailboxToken]:
    result = await db.execute(select(MailboxToken).where(MailboxToken.employee_id == employee_id))
    return result.scalar_one_or_none()


async def connection_status(db: AsyncSession, employee_id) -> dict:
    return {"connected": await _mailbox_token(db, employee_id) is not None}


def connect_url(gmail: GmailClient, settings: Settings, employee_id) -> str:
    return gmail.authorization_url(issue_state_token(settings, employee_id))


async def complete_connection(db: AsyncSession, gmail: GmailClient, settings: Settings, code: str, state: str) -> uuid.UUID:
    """OAuth callback: verify state, exchange the code and store the credentials"""
    employee_id = read_state_token(settings, state)
    credentials_json = await run_in_threadpool(gmail.exchange_code, code)

    token = await _mailbox_token(db, employee_id)
    if token is None:
        db.add(MailboxToken(id=uuid.uuid4(), employee_id=employee_id, credentials_json=credentials_json))
    else:
        token.credentials_json = credentials_json
        token.connected_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info("Gmail connected for employee %s", str(employee_id)[:8])
    return employee_id


async def disconnect(db: AsyncSession, employee_id) -> None:
    await db.execute(delete(MailboxToken).where(MailboxToken.employee_id == employee_id))
    await db.commit()
    logger.info("Gmail disconnected for employee %s", str(employee_id)[:8])


# ── Custom emails (employee's Gmail) ──────────────────────────────────────────

async def send_custom_email(
    db: AsyncSession,
    gmail: GmailClient,
    settings: Settings,
    contact_id,
    employee: Employee,
    company_id,
    subject: str,
    body: str,
    cc: Optional[str] = None,
    bcc: Optional[str] = None,
    recipient_email: Optional[str] = None,
) -> Email:
    contact = await load_contact(db, contact_id, company_id)

    mailbox = await _mailbox_token(db, employee.id)
    if mailbox is None:
        raise EmailNotConnected()

    to_email = normalize_email(recipient_email) if recipient_email else contact.email
    token = uuid.uuid4().hex
    html_body = _tracked_html(body, tracking_url(settings, token))

    try:
        raw = build_raw_message(
            sender_name=employee.name,
            sender_email=employee.email,
            to=to_email,
            subject=subject,
            html_body=html_body,
            cc=normalize_address_list(cc),
            bcc=normalize_address_list(bcc),
        )
    except ValueError as e:
        # Header injection (CR/LF) and other malformed header values
        raise ValidationError(f"Invalid email headers: {e}")

    email = Email(
        id=uuid.uuid4(),
        contact_id=contact.id,
        employee_id=employee.id,
        subject=subject,
        body=html_body,
        tracking_token=token,
        clicked=False,
    )
    db.add(email)
    await db.commit()

    try:
        creds = await run_in_threadpool(gmail.load_credentials, mailbox.credentials_json)
        sent = await run_in_threadpool(gmail.send, creds, raw)
    except CRMError as e:
        logger.error("Failed to send email to %s: %s", to_email, e)
        raise
    except Exception as e:
        logger.exception("Failed to send email to %s", to_email)
        raise SendFailed(f"Failed to send email: {e}") from e

    # Keep the refreshed access token
    mailbox.credentials_json = creds.to_json()
    email.gmail_message_id = sent.get("message_id")
    await db.commit()

    logger.info("Email sent via Gmail to %s (ID: %s)", to_email, str(email.id)[:8])
    return email
