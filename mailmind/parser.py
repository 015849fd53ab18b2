"""Raw RFC 822 bytes → :class:`~mailmind.models.Message`."""

from __future__ import annotations

import email
import email.policy
import email.utils
import re
from datetime import datetime, timezone
from email.message import EmailMessage

from .errors import MessageParseError
from .models import Message

NO_SUBJECT = "(No Subject)"
UNKNOWN_SENDER = "Unknown Sender"

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def derive_identity(
    sequence_number: int,
    subject: str | None,
    sender: str | None,
    date: datetime | None,
) -> str:
    """Build a stable key for a message that carries no Message-ID.

    Only the first 20 characters of subject and sender are used, and
    anything outside ``[a-zA-Z0-9-]`` becomes ``-``. An undated message
    contributes ``0`` so repeated parses agree.
    """
    epoch_ms = int(date.timestamp() * 1000) if date is not None else 0
    raw = "-".join(
        [
            "email",
            str(sequence_number),
            (subject or "")[:20] or "no-subject",
            str(epoch_ms),
            (sender or "")[:20] or "no-sender",
        ]
    )
    return _UNSAFE_ID_CHARS.sub("-", raw)


class MessageParser:
    """Stateless parser used by the mailbox session for every fetched message."""

    def parse(
        self,
        raw: bytes | str,
        *,
        sequence_number: int,
        internal_date: datetime | None = None,
    ) -> Message:
        """Parse one message.

        Date priority is the server's INTERNALDATE, then the ``Date``
        header, then the current time. Raises :class:`MessageParseError`
        for anything that prevents building the record.
        """
        try:
            return self._parse(raw, sequence_number, internal_date)
        except MessageParseError:
            raise
        except Exception as exc:
            raise MessageParseError(f"message {sequence_number}: {exc}") from exc

    def _parse(
        self,
        raw: bytes | str,
        sequence_number: int,
        internal_date: datetime | None,
    ) -> Message:
        if isinstance(raw, str):
            msg = email.message_from_string(raw, policy=email.policy.default)
        else:
            msg = email.message_from_bytes(raw, policy=email.policy.default)

        subject = _header_text(msg, "Subject")
        sender = _header_text(msg, "From")
        known_date = self._resolve_date(msg, internal_date)
        message_id = _header_text(msg, "Message-ID")

        return Message(
            identity=message_id
            or derive_identity(sequence_number, subject, sender, known_date),
            sender=sender or UNKNOWN_SENDER,
            subject=subject or NO_SUBJECT,
            body=self._extract_body(msg),
            date=known_date or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def _resolve_date(
        self, msg: EmailMessage, internal_date: datetime | None
    ) -> datetime | None:
        """INTERNALDATE, else the ``Date`` header, else ``None``."""
        if internal_date is not None:
            return _as_utc(internal_date)
        return _parse_header_date(msg)

    # ------------------------------------------------------------------
    # Bodies
    # ------------------------------------------------------------------

    def _extract_body(self, msg: EmailMessage) -> str:
        """Return the first plain-text part, else the first HTML part, else ``""``."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain" and body_text is None:
                body_text = _decode_text(part)
            elif content_type == "text/html" and body_html is None:
                body_html = _decode_text(part)

        if body_text:
            return body_text
        return body_html or ""


def _header_text(msg: EmailMessage, name: str) -> str:
    value = msg.get(name)
    if value is None:
        return ""
    return str(value).strip()


def _parse_header_date(msg: EmailMessage) -> datetime | None:
    try:
        # Some interpreter versions already fail while building the header object.
        value = msg.get("Date")
        if value is None:
            return None
        parsed = email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _decode_text(part: EmailMessage) -> str:
    try:
        content = part.get_content()
    except (LookupError, UnicodeError):
        # Unknown or lying charset declaration.
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content)
