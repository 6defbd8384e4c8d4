"""Outbound delivery channels used by workflow actions.

Each channel handles delivery for one transport. Email actions depend on
the BaseChannel interface only, so tests and development setups can swap
in a channel that records or logs instead of talking to SMTP.
"""

import asyncio
import html
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import structlog

from app.config import Settings, get_settings
from core.utils import utc_now

logger = structlog.get_logger(__name__)


# ─── Data Types ────────────────────────────────────────────────

@dataclass
class OutboundMessage:
    """A rendered message ready for delivery."""
    recipients: list[str]
    subject: str
    body: str
    html: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    recipients: list[str]
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for delivery channels."""

    name: str = "base"

    @abstractmethod
    async def send(self, message: OutboundMessage) -> DeliveryResult:
        """Deliver a message through this channel."""
        ...


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send messages via SMTP.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    name = "email"

    def __init__(self, config: dict = None):
        self.config = config or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailChannel":
        return cls({
            "smtp_host": settings.SMTP_HOST,
            "smtp_port": settings.SMTP_PORT,
            "smtp_user": settings.SMTP_USER,
            "smtp_password": settings.SMTP_PASSWORD,
            "from_address": settings.MAIL_FROM,
            "use_tls": settings.SMTP_USE_TLS,
        })

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        """Send one email to all recipients."""
        try:
            from_addr = self.config.get("from_address", "workflows@localhost")

            msg = MIMEMultipart("alternative")
            msg["Subject"] = message.subject
            msg["From"] = from_addr
            msg["To"] = ", ".join(message.recipients)
            msg.attach(MIMEText(message.body, "plain"))
            msg.attach(MIMEText(message.html or _default_html(message), "html"))

            # smtplib blocks; keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_smtp, from_addr, message.recipients, msg)

            return DeliveryResult(
                success=True,
                recipients=message.recipients,
                message="Email sent",
                delivered_at=utc_now().isoformat(),
            )

        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email send failed", error=str(e), recipients=message.recipients)
            return DeliveryResult(
                success=False,
                recipients=message.recipients,
                error=str(e),
            )

    def _send_smtp(self, from_addr, to_addrs, msg):
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user", "")
        password = self.config.get("smtp_password", "")
        with smtplib.SMTP(host, port, timeout=30) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, to_addrs, msg.as_string())


# ─── Logging Channel ───────────────────────────────────────────

class LoggingChannel(BaseChannel):
    """Logs messages instead of delivering them (MAIL_ENABLED=false)."""

    name = "log"

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        logger.info(
            "Email delivery disabled, message logged",
            recipients=message.recipients,
            subject=message.subject,
        )
        return DeliveryResult(
            success=True,
            recipients=message.recipients,
            message="Logged (delivery disabled)",
            delivered_at=utc_now().isoformat(),
        )


def _default_html(message: OutboundMessage) -> str:
    body = html.escape(message.body).replace(chr(10), "<br>")
    subject = html.escape(message.subject)
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">{subject}</h2>
        <div style="color: #555; line-height: 1.6;">{body}</div>
        <hr style="border: none; border-top: 1px solid #eee; margin: 20px 0;">
        <p style="color: #999; font-size: 12px;">Sent by the HR workflow engine</p>
    </div>
    """


def get_email_channel(settings: Settings = None) -> BaseChannel:
    """Return the SMTP channel when mail is enabled, else the logging channel."""
    settings = settings or get_settings()
    if settings.MAIL_ENABLED:
        return EmailChannel.from_settings(settings)
    return LoggingChannel()
