# app/agreements/notifications.py

"""
Driver-facing emails for the agreement lifecycle.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.utils.email_service import EmailService
from app.utils.logger import get_logger

logger = get_logger(__name__)

TEMPLATE_PATH = Path(__file__).parent.parent / "templates" / "emails"

jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_PATH),
    autoescape=select_autoescape(["html"]),
)


def build_signing_link(base_url: str, agreement_id: int, token: str) -> str:
    """Public URL of the driver signing page"""
    return f"{base_url.rstrip('/')}/agreements/driver/sign/{agreement_id}?token={token}"


def render_email(template_stem: str, context: Dict[str, Any]) -> Dict[str, str]:
    """Render the .html and .txt variants of an email template."""
    return {
        "html": jinja_env.get_template(f"{template_stem}.html").render(context),
        "text": jinja_env.get_template(f"{template_stem}.txt").render(context),
    }


class AgreementNotifier:
    """Renders agreement emails and hands them to the mailer."""

    def __init__(self, mailer: EmailService, organisation_name: Optional[str] = None):
        self.mailer = mailer
        self.organisation_name = organisation_name

    async def send_invite(
        self,
        *,
        to: str,
        driver_name: str,
        requester_name: str,
        vehicle_name: str,
        license_plate: Optional[str],
        template_title: Optional[str],
        signing_link: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        title = template_title or "Vehicle Rental Agreement"
        body = render_email(
            "agreement_invite",
            {
                "driver_name": driver_name,
                "requester_name": requester_name,
                "vehicle_name": vehicle_name,
                "license_plate": license_plate or "-",
                "template_title": title,
                "signing_link": signing_link,
                "expires_at": expires_at.strftime("%d %b %Y") if expires_at else None,
                "organisation_name": self.organisation_name,
            },
        )
        logger.info("Sending agreement invite", to=to, template_title=title)
        await self.mailer.send(to, f"Please sign: {title}", body["html"], body["text"])

    async def send_termination(
        self,
        *,
        to: str,
        driver_name: str,
        requester_name: str,
        vehicle_name: str,
        license_plate: Optional[str],
        template_title: Optional[str],
        reason: Optional[str] = None,
    ) -> None:
        title = template_title or "Vehicle Rental Agreement"
        body = render_email(
            "agreement_termination",
            {
                "driver_name": driver_name,
                "requester_name": requester_name,
                "vehicle_name": vehicle_name,
                "license_plate": license_plate or "-",
                "template_title": title,
                "reason": reason,
                "organisation_name": self.organisation_name,
            },
        )
        logger.info("Sending agreement termination notice", to=to, template_title=title)
        await self.mailer.send(to, f"Agreement terminated: {title}", body["html"], body["text"])
