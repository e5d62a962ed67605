"""SMTP sender for composed report messages."""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

from mailstat.core.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComposedMessage:
    """A report ready for delivery."""

    sender: str
    to: str
    subject: str
    html_body: str
    attachment: bytes | None = None
    attachment_mime_type: str = "image/png"
    attachment_filename: str = "count-by-date.png"

    def to_email_message(self) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = self.to
        message["Subject"] = self.subject
        message.set_content("This report is best viewed as HTML.")
        message.add_alternative(self.html_body, subtype="html")
        if self.attachment is not None:
            maintype, _, subtype = self.attachment_mime_type.partition("/")
            message.add_attachment(
                self.attachment,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=self.attachment_filename,
            )
        return message


class SmtpSender:
    """Deliver ComposedMessage objects over SMTP."""

    def __init__(
        self,
        host: str,
        port: int = 465,
        *,
        username: str = "",
        password: str = "",
        tls: str = "tls",
        timeout_seconds: float = 30.0,
    ) -> None:
        if tls not in ("tls", "starttls", "none"):
            raise ValueError(f"Invalid TLS mode: {tls}")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._tls = tls
        self._timeout = timeout_seconds

    def _open(self) -> smtplib.SMTP:
        if self._tls == "tls":
            return smtplib.SMTP_SSL(
                self._host,
                self._port,
                context=ssl.create_default_context(),
                timeout=self._timeout,
            )
        smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        if self._tls == "starttls":
            smtp.starttls(context=ssl.create_default_context())
        return smtp

    def send(self, message: ComposedMessage) -> None:
        """Send a composed message.

        Raises:
            TransportError: On connection, authentication, or delivery failure.
        """
        try:
            with self._open() as smtp:
                if self._username and self._password:
                    smtp.login(self._username, self._password)
                smtp.send_message(message.to_email_message())
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"Failed to send report to {message.to}: {e}") from e

        logger.info("Sent report %r to %s", message.subject, message.to)
