"""
System Mailer
=============
SMTP delivery for automated mail (lead welcome emails, invitations) sent
from the application's own address rather than an employee mailbox.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from crm.config import Settings

logger = logging.getLogger(__name__)


class SystemMailer:
    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls, settings: Settings) -> "SystemMailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            use_tls=settings.smtp_use_tls,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to: str, subject: str, html: str) -> bool:
        """Deliver one HTML email. Returns False when SMTP isn't configured."""
        if not self.configured:
            logger.warning("SMTP not configured, skipping email to %s", to)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg.attach(MIMEText(html, "html", "utf-8"))

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.from_email, [to], msg.as_string())

        logger.info("System email sent to %s", to)
        return True
