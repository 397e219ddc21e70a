"""
auth/mailer.py -- Out-of-band delivery of second-factor codes.

The orchestrator depends only on the CodeDispatcher protocol; SmtpMailer is the
production implementation. smtplib is blocking, so each send runs in a worker
thread via asyncio.to_thread.

Dev mode: when no SMTP host is configured and debug is on, the code is written
to the DEBUG log instead of being sent. Without debug an unconfigured mailer
raises DeliveryError.

Recipient addresses are redacted in every log line.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Protocol

from auth.errors import DeliveryError

logger = logging.getLogger("arena.auth.mailer")

_SUBJECT = "Your verification code"


class CodeDispatcher(Protocol):
    async def send_second_factor_code(self, email: str, code: str, username: str | None = None) -> None: ...


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """Sends verification codes over SMTP (STARTTLS or implicit TLS)."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "Arena Auth",
        debug: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.debug = debug
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "SmtpMailer":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            from_name=settings.mail_from_name,
            debug=settings.debug,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    async def send_second_factor_code(self, email: str, code: str, username: str | None = None) -> None:
        if not self.is_configured:
            if self.debug:
                logger.debug(
                    "SMTP not configured (dev mode, local use only): code for %s is %s", redact_email(email), code
                )
                return
            raise DeliveryError("Email delivery is not configured")

        message = self._build_message(email, username, code)
        try:
            await asyncio.to_thread(self._deliver, email, message)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error("Failed to send code to %s: %s: %s", redact_email(email), type(exc).__name__, exc)
            raise DeliveryError("Failed to send verification code", recipient=redact_email(email)) from exc
        logger.info("Sent verification code to %s", redact_email(email))

    def _build_message(self, email: str, username: str | None, code: str) -> MIMEText:
        body = (
            f"Hello {username or 'there'},\n\n"
            f"Your verification code is: {code}\n\n"
            "It expires in a few minutes. If you did not try to sign in, you can ignore this email.\n"
        )
        message = MIMEText(body, "plain")
        message["Subject"] = _SUBJECT
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = email
        return message

    def _deliver(self, email: str, message: MIMEText) -> None:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, email, message.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, email, message.as_string())
