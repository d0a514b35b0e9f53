"""Gmail dispatch through an employee's own mailbox.

`GmailClient` wraps the Google OAuth flow, credential refresh and the Gmail
send API. It is built from settings and handed to the request handlers as a
dependency, one per request.

Requirements:
    pip install google-api-python-client google-auth google-auth-oauthlib
"""
from __future__ import annotations

import base64
import html
import json
import logging
import re
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, List, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from crm.config import GMAIL_SCOPES, Settings
from crm.core.errors import EmailNotConnected, SendFailed

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def strip_html(markup: Optional[str]) -> str:
    """Plain-text rendition of an HTML body for the text/plain part"""
    if not markup:
        return ""
    text = re.sub(r"<br\s*/?>", "\n", markup, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return html.unescape(text).replace("\xa0", " ").strip()


def build_raw_message(
    *,
    sender_name: str,
    sender_email: str,
    to: str,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    cc: Optional[str] = None,
    bcc: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> str:
    """RFC 2822 multipart/alternative message, base64url encoded for the Gmail API."""
    msg = EmailMessage()
    msg["From"] = formataddr((sender_name, sender_email))
    msg["To"] = to
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["Subject"] = subject

    msg.set_content(text_body or strip_html(html_body))
    msg.add_alternative(html_body, subtype="html")

    return base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")


class GmailClient:
    """OAuth + send wrapper around the Gmail API for per-employee mailboxes."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, scopes: Optional[List[str]] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or GMAIL_SCOPES)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GmailClient":
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )

    def _flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }
        # No PKCE: the code comes back in a separate request with a fresh Flow
        return Flow.from_client_config(
            client_config,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, state: str) -> str:
        # offline + consent so Google always hands back a refresh token
        url, _ = self._flow().authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
            state=state,
        )
        return url

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for credentials, returned as JSON for storage"""
        flow = self._flow()
        flow.fetch_token(code=code)
        return flow.credentials.to_json()

    def load_credentials(self, credentials_json: str) -> Credentials:
        """Rebuild stored credentials, refreshing them when the access token expired"""
        try:
            creds = Credentials.from_authorized_user_info(json.loads(credentials_json), self.scopes)
        except (ValueError, KeyError) as e:
            logger.warning("Stored Gmail credentials are unusable: %s", e)
            raise EmailNotConnected()

        if not creds.valid:
            if not creds.refresh_token:
                raise EmailNotConnected()
            try:
                creds.refresh(Request())
            except RefreshError as e:
                logger.warning("Gmail token refresh failed: %s", e)
                raise EmailNotConnected()
        return creds

    def send(self, creds: Credentials, raw: str) -> Dict[str, Any]:
        try:
            service = build("gmail", "v1", credentials=creds, cache_discovery=False)
            sent = service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except RefreshError as e:
            logger.warning("Gmail credentials rejected while sending: %s", e)
            raise EmailNotConnected()
        except HttpError as e:
            raise SendFailed(f"Failed to send email: {e}")
        return {"message_id": sent.get("id"), "thread_id": sent.get("threadId")}
