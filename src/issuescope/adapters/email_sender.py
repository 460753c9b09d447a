"""SMTP email adapter.

Port 587 uses STARTTLS and port 465 implicit SSL. smtplib is blocking, so
every call runs in a worker thread to keep poll tasks responsive.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage

from issuescope.core.config import EmailConfig

LOGGER = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


class EmailError(RuntimeError):
    """Raised when the SMTP server cannot be reached or rejects a message."""


class SMTPEmailSender:
    """Sends plain-text emails with the configured SMTP account."""

    def __init__(self, config: EmailConfig, timeout: float = SMTP_TIMEOUT_SECONDS) -> None:
        self._config = config
        self._timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self._config.port == 465:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                self._config.host, self._config.port, timeout=self._timeout, context=context
            )
        elif self._config.port == 587:
            client = smtplib.SMTP(self._config.host, self._config.port, timeout=self._timeout)
            client.starttls(context=context)
        else:
            raise EmailError(f"unrecognized port: {self._config.port}")
        client.login(self._config.username, self._config.password)
        return client

    def new_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._config.username
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        with self._connect() as client:
            client.send_message(message)

    def _test_blocking(self) -> None:
        with self._connect() as client:
            client.noop()

    async def send(self, message: EmailMessage) -> None:
        LOGGER.debug("Sending email to %s: %s", message["To"], message["Subject"])
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailError(f"unable to send message: {exc}") from exc

    async def test_connection(self) -> None:
        """Dial and authenticate once, used during config validation."""

        try:
            await asyncio.to_thread(self._test_blocking)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailError(f"unable to validate email config with dial: {exc}") from exc
