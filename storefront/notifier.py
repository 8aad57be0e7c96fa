"""
Transactional mail delivery.

Two implementations of the same interface:

- ``SmtpNotifier`` sends through an SMTP server with aiosmtplib.
- ``LogNotifier`` only logs the message; used when no SMTP host is configured.

Callers decide what a failed send means. The order workflow treats every
send as best-effort.
"""

import logging
from email.message import EmailMessage
from typing import Optional, Protocol

import aiosmtplib

from .config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "noreply@storefront.local",
        start_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.start_tls = start_tls
        self.timeout = timeout

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, to: str, subject: str, body: str) -> None:
        message = self.build_message(to, subject, body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPException:
            logger.error("Failed to send email to %s via %s:%s", to, self.host, self.port)
            raise
        logger.info("Email sent successfully to %s", to)


class LogNotifier:
    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail to %s (not delivered, no SMTP host configured): %s\n%s", to, subject, body)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.smtp_host:
        return LogNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        sender=settings.mail_from,
        start_tls=settings.smtp_starttls,
    )
