"""
Email service for sending CV submission confirmations
"""
import logging
from pathlib import Path
from typing import Any, Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..config import Settings
from ..errors import EmailError

logger = logging.getLogger(__name__)

# Jinja2 environment for template rendering
template_dir = Path(__file__).parent.parent / "templates" / "emails"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html"]),
)

CONFIRMATION_SUBJECT = "Your CV Application Confirmation"


def render_confirmation(name: Optional[str], filename: str, app_name: str) -> str:
    applicant_name = name if name and name != "N/A" else "Applicant"
    template = jinja_env.get_template("cv_confirmation.html")
    return template.render(name=applicant_name, filename=filename, app_name=app_name)


class EmailSender:
    """SMTP sender. Construct with ``from_settings``; ``mailer`` can be swapped in tests."""

    def __init__(self, mailer: Any = None, app_name: str = "CV Intake"):
        self.mailer = mailer
        self.app_name = app_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        if not settings.has_email:
            logger.warning("[Email] SMTP not configured - confirmation emails disabled")
            return cls(None, settings.app_name)

        conf = ConnectionConfig(
            MAIL_USERNAME=settings.mail_username,
            MAIL_PASSWORD=settings.mail_password,
            MAIL_FROM=settings.mail_from,
            MAIL_PORT=settings.mail_port,
            MAIL_SERVER=settings.mail_server,
            MAIL_FROM_NAME=settings.mail_from_name,
            MAIL_STARTTLS=settings.mail_starttls,
            MAIL_SSL_TLS=settings.mail_ssl_tls,
            USE_CREDENTIALS=True,
            VALIDATE_CERTS=settings.mail_validate_certs,
        )
        return cls(FastMail(conf), settings.app_name)

    @property
    def enabled(self) -> bool:
        return self.mailer is not None

    async def send_confirmation(self, name: Optional[str], email: str, filename: str) -> bool:
        """
        Send the confirmation email.

        Raises:
            EmailError: SMTP failure or email disabled
        """
        if not self.enabled:
            raise EmailError("Email service not configured")

        html_content = render_confirmation(name, filename, self.app_name)
        message = MessageSchema(
            subject=CONFIRMATION_SUBJECT,
            recipients=[email],
            body=html_content,
            subtype=MessageType.html,
        )
        try:
            await self.mailer.send_message(message)
        except Exception as e:
            raise EmailError(f"Failed to send confirmation email to {email}: {e}") from e
        logger.info(f"[Email] Confirmation sent to {email}")
        return True
