"""Outbound transactional email."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from identity_service.config import Config

logger = logging.getLogger(__name__)

_templates = Environment(
    loader=PackageLoader("identity_service", "templates"),
    autoescape=select_autoescape(["html"]),
)


def render_template(template: str, /, **params: object) -> str:
    """Render ``templates/email/<template>``; ``params`` may include ``name``."""

    return _templates.get_template(f"email/{template}").render(**params)


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Send HTML mail over SMTP, or log it when SMTP is not configured."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: str = "noreply@example.com",
        base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "EmailService":
        return cls(
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port,
            smtp_user=config.smtp_user,
            smtp_password=config.smtp_password,
            smtp_use_tls=config.smtp_use_tls,
            from_email=config.email_from,
            base_url=config.app_base_url,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    def send(self, to: str, subject: str, content: str) -> bool:
        """Deliver one message; returns ``False`` instead of raising."""

        if not self.is_configured:
            logger.info(
                "email.dev_mode to=%s subject=%s",
                redact_email(to),
                subject,
            )
            return True

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.from_email
        message["To"] = to
        message.set_content("This message requires an HTML capable client.")
        message.add_alternative(content, subtype="html")

        try:
            with smtplib.SMTP(
                self.smtp_host, self.smtp_port, timeout=self.timeout
            ) as smtp:
                if self.smtp_use_tls:
                    smtp.starttls()
                if self.smtp_user and self.smtp_password:
                    smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("email.send_failed to=%s", redact_email(to))
            return False
        logger.info("email.sent to=%s subject=%s", redact_email(to), subject)
        return True

    def send_welcome(self, to: str, name: Optional[str]) -> bool:
        content = render_template(
            "welcome.html", name=name or to, login_url=f"{self.base_url}/login"
        )
        return self.send(to, "Welcome aboard", content)

    def send_password_reset(
        self, to: str, name: Optional[str], token: str, expires_minutes: int
    ) -> bool:
        content = render_template(
            "password_reset.html",
            name=name or to,
            reset_url=f"{self.base_url}/reset-password?token={token}",
            expires_minutes=expires_minutes,
        )
        return self.send(to, "Reset your password", content)


__all__ = ["EmailService", "redact_email", "render_template"]
