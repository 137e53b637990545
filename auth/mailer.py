"""
auth/mailer.py -- Email dispatch for reset codes.

EmailDispatcher is the seam the reset protocol depends on. Two real
implementations:

  SmtpMailer -- smtplib with STARTTLS, optional login, and a bounded socket
                timeout so a slow relay cannot hang a worker forever.
  LogMailer  -- used when SMTP is not configured (local development). Logs the
                recipient and subject only; the body holds the code and is
                never written to the log.

Every dispatcher raises DeliveryError on failure. The reset protocol logs it
and moves on: the ticket is already persisted, and the user can re-request once
the minimum interval has passed.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("authcore.auth.mailer")


class DeliveryError(Exception):
    """The message could not be handed to the mail transport."""


class EmailDispatcher(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery via {self.host}:{self.port} failed") from exc
        logger.info("Email '%s' sent to %s", subject, to)


class LogMailer:
    def send(self, to: str, subject: str, body: str) -> None:
        logger.warning("SMTP not configured; email '%s' to %s was not delivered", subject, to)


def build_mailer(settings) -> EmailDispatcher:
    """Return an SmtpMailer when SMTP_HOST and SMTP_FROM are set, else a LogMailer."""
    if settings.smtp_configured:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            username=settings.smtp_user,
            password=settings.smtp_password,
            timeout=settings.smtp_timeout_secs,
        )
    return LogMailer()
