"""
SMTP mailer used by the email_action step.
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from .profiles import EmailProfile
from ..exceptions import ExternalCallError

logger = logging.getLogger(__name__)


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


@dataclass
class OutgoingEmail:
    to: List[str]
    subject: str
    body: str
    cc: List[str] = field(default_factory=list)
    attachment: Optional[EmailAttachment] = None


def build_message(email: OutgoingEmail, from_address: str) -> MIMEMultipart:
    msg = MIMEMultipart()
    msg["From"] = from_address
    msg["To"] = ", ".join(email.to)
    if email.cc:
        msg["Cc"] = ", ".join(email.cc)
    msg["Subject"] = email.subject

    msg.attach(MIMEText(email.body, "html" if "<" in email.body and ">" in email.body else "plain", "utf-8"))

    if email.attachment:
        maintype, _, subtype = email.attachment.mime_type.partition("/")
        part = MIMEBase(maintype or "application", subtype or "octet-stream")
        part.set_payload(email.attachment.content)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", f'attachment; filename="{email.attachment.filename}"')
        msg.attach(part)

    return msg


class Mailer:
    """Sends email through an SMTP profile."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _send_sync(self, profile: EmailProfile, email: OutgoingEmail) -> None:
        msg = build_message(email, profile.from_address)
        with smtplib.SMTP(profile.smtp_host, profile.smtp_port, timeout=self.timeout) as server:
            if profile.use_tls:
                server.starttls()
            if profile.smtp_username and profile.smtp_password:
                server.login(profile.smtp_username, profile.smtp_password)
            server.send_message(msg)

    async def send(self, profile: EmailProfile, email: OutgoingEmail) -> None:
        """
        Send one email.

        Raises:
            ExternalCallError: On SMTP failure
        """
        logger.info(f"Sending email to {email.to} via {profile.smtp_host}")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self._send_sync(profile, email))
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: {e}")
            raise ExternalCallError(f"Email send failed: {e}") from e
