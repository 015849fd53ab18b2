"""Outbound delivery over SMTPS with classified failures."""

from __future__ import annotations

import asyncio
import smtplib
import socket
import ssl
from email.message import EmailMessage

import structlog
from bs4 import BeautifulSoup

from .config import SmtpConfig
from .errors import (
    RecipientRejectedError,
    SendAuthError,
    SendConnectionError,
    SendError,
    SendHostNotFoundError,
    SendTimeoutError,
)
from .mailbox import login_name

logger = structlog.get_logger()


def html_to_text(html: str) -> str:
    """Text for the plain alternative: scripts and styles dropped, entities decoded."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text()


def build_message(
    from_account: str,
    to: str,
    subject: str,
    html_body: str,
    reply_to: str | None = None,
) -> EmailMessage:
    """Plain-text + HTML alternative, replying to the sender by default."""
    msg = EmailMessage()
    msg["From"] = from_account
    msg["To"] = to
    msg["Subject"] = subject
    msg["Reply-To"] = reply_to or from_account
    msg.set_content(html_to_text(html_body))
    msg.add_alternative(html_body, subtype="html")
    return msg


class SmtpSender:
    """Send one message per call on a fresh SMTPS connection."""

    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    async def send(
        self,
        from_account: str,
        credential: str,
        to: str,
        subject: str,
        html_body: str,
        reply_to: str | None = None,
    ) -> None:
        """Deliver the message or raise a :class:`SendError` subclass."""
        if not all((from_account, credential, to, subject, html_body)):
            raise SendError(
                "Failed to send email: missing required fields "
                "(from, credential, to, subject, body)"
            )

        message = build_message(from_account, to, subject, html_body, reply_to)
        logger.info(
            "smtp_send_started",
            host=self._config.host,
            port=self._config.port,
            sender=from_account,
            recipient=to,
        )
        try:
            await asyncio.to_thread(self._send_sync, from_account, credential, message)
        except SendError as exc:
            logger.warning("smtp_send_failed", recipient=to, error=str(exc))
            raise
        logger.info("smtp_send_complete", recipient=to)

    def _send_sync(self, from_account: str, credential: str, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP_SSL(
                self._config.host,
                self._config.port,
                timeout=self._config.timeout_seconds,
                context=self._ssl_context(),
            ) as smtp:
                smtp.login(login_name(from_account), credential)
                code, _ = smtp.noop()
                if code != 250:
                    raise SendConnectionError(
                        f"Failed to send email: server verification failed ({code})"
                    )
                smtp.send_message(message)
        except SendError:
            raise
        except smtplib.SMTPException as exc:
            raise self._classify_smtp(exc) from exc
        except OSError as exc:
            raise self._classify_os(exc) from exc

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._config.verify_certificates:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _classify_smtp(self, exc: smtplib.SMTPException) -> SendError:
        if isinstance(exc, smtplib.SMTPAuthenticationError):
            return SendAuthError(
                "Failed to send email: Authentication failed. "
                "Please check your mail account password."
            )
        if isinstance(exc, smtplib.SMTPRecipientsRefused) or (
            isinstance(exc, smtplib.SMTPResponseException) and exc.smtp_code == 550
        ):
            return RecipientRejectedError(
                "Failed to send email: Mailbox unavailable or recipient address "
                "rejected. Please check the recipient email address."
            )
        if isinstance(exc, (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected)):
            return self._connection_failed()
        return SendError(f"Failed to send email: {exc}")

    def _classify_os(self, exc: OSError) -> SendError:
        host, port = self._config.host, self._config.port
        if isinstance(exc, socket.gaierror):
            return SendHostNotFoundError(
                f"Failed to send email: SMTP server host not found: {host}. "
                "Please check the SMTP_HOST setting."
            )
        if isinstance(exc, TimeoutError):
            return SendTimeoutError(
                f"Failed to send email: Connection timed out. The SMTP server "
                f"{host}:{port} did not respond in time."
            )
        return self._connection_failed()

    def _connection_failed(self) -> SendConnectionError:
        return SendConnectionError(
            f"Failed to send email: Connection failed. Cannot connect to SMTP server "
            f"{self._config.host}:{self._config.port}. Please check your network connection."
        )
