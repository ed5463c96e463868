# app/utils/email_service.py

import asyncio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import cached_property, lru_cache
from typing import List, Optional

import boto3

from app.core.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)


class EmailService:
    """
    Sends multipart (HTML + plain text) email through Amazon SES.
    """
    def __init__(self, sender: Optional[str] = None, configuration_set: Optional[str] = None):
        self.sender = sender or settings.aws_ses_sender_email
        self.configuration_set = configuration_set or settings.aws_ses_configuration_set

    @cached_property
    def ses_client(self):
        """SES client, created on first send"""
        return boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

    def _build_message(self, to_emails: List[str], subject: str, html: str, text: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(to_emails)
        # Clients prefer the last part, so HTML goes after the text fallback
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        """
        Send a single email. Errors from SES propagate to the caller.
        """
        if not self.sender:
            logger.error("Email sending is disabled: AWS_SES_SENDER_EMAIL is not configured")
            raise RuntimeError("Email sender is not configured")

        msg = self._build_message([to], subject, html, text)
        kwargs = {
            "Source": self.sender,
            "Destinations": [to],
            "RawMessage": {"Data": msg.as_string()},
        }
        if self.configuration_set:
            kwargs["ConfigurationSetName"] = self.configuration_set

        try:
            # boto3 is synchronous, keep it off the event loop
            await asyncio.to_thread(self.ses_client.send_raw_email, **kwargs)
            logger.info("Email sent successfully", subject=subject, to=to)
        except Exception as e:
            logger.error("Failed to send email", subject=subject, to=to, error_message=str(e))
            raise


@lru_cache
def get_email_service() -> EmailService:
    """Dependency returning the shared EmailService"""
    return EmailService()
