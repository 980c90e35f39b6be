"""SMTP email transport."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from .config import Settings
from .errors import ConfigurationError, TransportFailure

logger = logging.getLogger("uvicorn.error")

SMTP_TIMEOUT_SECONDS = 30


class SMTPTransport:
    """Send single messages through an SMTP server.

    ``send`` never raises: missing credentials and provider errors are logged
    and reported as ``False``. Retrying is left to the caller.
    """

    def __init__(self, config: Settings):
        self.host = config.smtp_host
        self.port = config.smtp_port
        self.username = config.smtp_user
        self.password = config.smtp_password
        self.use_ssl = config.smtp_use_ssl
        self.from_address = config.sender_address
        self.from_name = config.mail_from_name

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def _create_message(
        self, to_address: str, subject: str, html_body: str, text_body: str
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to_address
        msg["Message-ID"] = make_msgid()

        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            server = smtplib.SMTP_SSL(
                self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS, context=context
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
        try:
            if not self.use_ssl:
                server.starttls(context=context)
            server.login(self.username, self.password)
        except Exception:
            server.close()
            raise
        return server

    def _deliver(self, msg: MIMEMultipart) -> None:
        if not self.configured:
            raise ConfigurationError()
        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportFailure(f"{type(exc).__name__}: {exc}") from exc

    def send(
        self, to: str, subject: str, html_body: str, text_body: str = ""
    ) -> bool:
        logger.debug("Sending email to %s (subject=%r)", to, subject)
        try:
            msg = self._create_message(to, subject, html_body, text_body)
            self._deliver(msg)
        except ConfigurationError as exc:
            logger.error("Email to %s not sent: %s", to, exc)
            return False
        except TransportFailure as exc:
            logger.error("Email to %s failed (subject=%r): %s", to, subject, exc)
            return False
        logger.info("Email sent to %s (message_id=%s)", to, msg["Message-ID"])
        return True

    def verify(self) -> bool:
        """Check that the server accepts our credentials."""
        if not self.configured:
            logger.error("SMTP connection check skipped: %s", ConfigurationError())
            return False
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "SMTP connection check against %s:%s failed: %s",
                self.host,
                self.port,
                exc,
            )
            return False
        logger.info("SMTP connection check against %s:%s succeeded", self.host, self.port)
        return True
